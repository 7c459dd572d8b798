"""daytrace -- AI-synthesized activity timeline from screen captures.

Periodic screenshots are grouped into time-boxed batches, transcribed
into timestamped observations by a pluggable LLM backend, and folded
into a rolling window of timeline cards that is replaced wholesale on
every analysis cycle.
"""

__version__ = "0.1.0"
