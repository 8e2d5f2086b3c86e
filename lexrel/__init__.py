"""Release orchestration for the lex-0 ODD publishing repository."""

__version__ = "0.1.0"
