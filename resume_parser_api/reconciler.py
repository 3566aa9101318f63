"""Template-driven reconciliation of model output.

Language models asked to follow a JSON template drift from it: they rename
fields, change casing, flatten arrays into scalars or return a single object
where a list was expected. ``reconcile`` takes the template and the decoded
model answer (the *candidate*) and builds a fresh object with exactly the
template's keys and nesting, filled from the candidate wherever a confident
association exists.

Two passes run at every object level:

1. Structural pass, driven by the template's keys (exact key matches only).
2. Fuzzy pass: candidate keys that are not template keys are normalised
   (lower-case, ``_``/``-`` stripped) and matched against template keys by
   equality or containment. The first matching template key wins and is only
   written when it still holds an empty value.

Record arrays take their length from the candidate. A lone object where a
record array was expected becomes a one-record array, and any other scalar
there yields an empty array.

The function is total: any pair of JSON values yields a result, never an
exception.
"""

import copy
from typing import TypeAlias, Union, cast

JSONValue: TypeAlias = Union[
    dict[str, "JSONValue"], list["JSONValue"], str, int, float, bool, None
]
JSONObject: TypeAlias = dict[str, JSONValue]


def reconcile(template: JSONValue, candidate: JSONValue) -> JSONValue:
    """Coerce ``candidate`` into the shape of ``template``.

    Args:
        template: Schema-by-example. Object keys define fields, a one-element
            array holding an object defines repeated records, scalar leaves
            are placeholders kept when nothing better is found.
        candidate: Raw JSON decoded from the model response.

    Returns:
        A new value shaped like ``template``. Neither input is mutated.
    """
    if isinstance(template, dict):
        result = copy.deepcopy(template)
        if isinstance(candidate, dict):
            _fill(result, candidate, template)
        return result

    if isinstance(template, list):
        return _reconcile_array(template, candidate)

    return copy.deepcopy(candidate) if candidate is not None else template


def _is_record_array(template_value: list[JSONValue]) -> bool:
    return bool(template_value) and isinstance(template_value[0], dict)


def _reconcile_array(template_value: list[JSONValue], value: JSONValue) -> list[JSONValue]:
    """Reconcile one array-typed field.

    Record arrays take their cardinality from the candidate; scalar arrays
    copy a candidate list verbatim and wrap anything else.
    """
    if _is_record_array(template_value):
        record = template_value[0]
        if isinstance(value, list):
            return [reconcile(record, item) for item in value]
        if isinstance(value, dict):
            return [reconcile(record, value)]
        return []

    if isinstance(value, list):
        return copy.deepcopy(value)
    if value is None:
        return []
    return [copy.deepcopy(value)]


def _fill(result: JSONObject, candidate: JSONObject, template: JSONObject) -> None:
    for key, template_value in template.items():
        if key not in candidate:
            continue

        value = candidate[key]
        if isinstance(template_value, list):
            result[key] = _reconcile_array(template_value, value)
        elif isinstance(template_value, dict):
            # Non-object candidate values leave the nested defaults untouched
            if isinstance(value, dict):
                _fill(cast(JSONObject, result[key]), value, template_value)
        elif value is not None:
            result[key] = copy.deepcopy(value)

    _fuzzy_fill(result, candidate, template)


def normalize_key(key: str) -> str:
    """Lower-case a field name and drop ``_`` and ``-`` separators."""
    return key.lower().replace("_", "").replace("-", "")


def _keys_match(source: str, target: str) -> bool:
    return source == target or target in source or source in target


def _fuzzy_fill(result: JSONObject, candidate: JSONObject, template: JSONObject) -> None:
    normalized_template = [(key, normalize_key(key)) for key in template]

    for source_key, value in candidate.items():
        if source_key in template:
            continue

        normalized_source = normalize_key(source_key)
        for template_key, normalized in normalized_template:
            if not _keys_match(normalized_source, normalized):
                continue

            template_value = template[template_key]
            if value is not None and is_empty_value(result[template_key], template_value):
                if isinstance(template_value, list):
                    result[template_key] = _reconcile_array(template_value, value)
                else:
                    result[template_key] = copy.deepcopy(value)
            # First matching template key wins, filled or not
            break


def _json_equal(left: JSONValue, right: JSONValue) -> bool:
    return type(left) is type(right) and left == right


def is_empty_value(value: JSONValue, template_value: JSONValue) -> bool:
    """Whether a result slot may still be overwritten by the fuzzy pass.

    Object-typed fields are never empty: only the exact recursive merge
    writes into them.
    """
    if isinstance(template_value, list):
        return (
            not isinstance(value, list)
            or len(value) == 0
            or _json_equal(value, template_value)
        )
    if isinstance(template_value, dict):
        return False
    return value is None or value == "" or _json_equal(value, template_value)
