"""Request parameter validation.

Checks run in the order the expectations are declared and the first
violation wins, so the same bad input always yields the same message.
Missing fields are reported, never raised.
"""

import json
from collections import namedtuple

STRING = "string"

OneOf = namedtuple("OneOf", ["values"])


def validate_parameters(values, expectations):
    """Validate ``values`` against an ordered list of (field, expectation).

    An expectation is either STRING (present, non-null, a str) or
    OneOf([...]) (one of the listed strings).

    Returns an error message for the first offending field, or None.
    """
    for field, expectation in expectations:
        value = values.get(field)

        if expectation == STRING:
            if value is None:
                return f"Missing required parameter {field}"
            if not isinstance(value, str):
                return f"Expected parameter {field} to be a string got {json.dumps(value)}"
        elif isinstance(expectation, OneOf):
            if value not in expectation.values:
                return (
                    f"Expected parameter {field} to be one of "
                    f"{', '.join(expectation.values)}"
                )
        else:
            raise TypeError(f"Unknown expectation for {field}: {expectation!r}")

    return None
