"""Rule matchers: Sigma-style patterns, boolean expressions and sequences."""

from lookout.detection.expression import Expression, compile_expression
from lookout.detection.sequence import SequenceDefinition, SequenceMatch, parse_sequence
from lookout.detection.sigma import SigmaDetection, parse_detection

__all__ = [
    "Expression",
    "SequenceDefinition",
    "SequenceMatch",
    "SigmaDetection",
    "compile_expression",
    "parse_detection",
    "parse_sequence",
]
