"""relaybot: Discord channel relay with loop guard and session quota guard."""

__version__ = "0.1.0"
