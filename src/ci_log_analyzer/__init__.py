"""Learn what successful CI logs look like and extract the unusual parts of failed ones."""

__version__ = "0.1.0"
