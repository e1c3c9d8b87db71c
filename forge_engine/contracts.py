# forge_engine/contracts.py
"""
Structural compatibility between step contracts.

A consumer accepts a producer when every field the consumer needs exists
in the producer (matched by wire key, i.e. alias) with a type that fits:

- identical types, or a consumer typed ``Any``;
- nested models, compared recursively;
- ``Literal`` values that are a subset of the consumer's values;
- list/dict element types that fit;
- ``int`` into ``float``.

A producer field that may be ``None`` only fits a consumer field that
accepts ``None`` too. Checks run when a pipeline is committed, so a real
mismatch is reported before any step executes.
"""
import types
from typing import Any, Literal, Union, get_args, get_origin

from pydantic import BaseModel


def wire_key(name: str, field) -> str:
    return field.alias or name


def _is_model(tp: Any) -> bool:
    return isinstance(tp, type) and issubclass(tp, BaseModel)


def _members(tp: Any) -> tuple[Any, ...]:
    if get_origin(tp) in (Union, types.UnionType):
        return get_args(tp)
    return (tp,)


def _name(tp: Any) -> str:
    if tp is type(None):
        return "None"
    return getattr(tp, "__name__", None) or repr(tp)


def _compare(src: Any, dst: Any, where: str) -> list[str]:
    if dst is Any or src is Any or src == dst:
        return []

    src_members = _members(src)
    if len(src_members) > 1:
        issues: list[str] = []
        for member in src_members:
            issues.extend(_compare(member, dst, where))
        return issues

    dst_members = _members(dst)
    if len(dst_members) > 1:
        for member in dst_members:
            if not _compare(src, member, where):
                return []
        if src is type(None):
            return [f"{where}: produced value may be None but consumer requires {_name(dst)}"]
        return [f"{where}: {_name(src)} does not fit {_name(dst)}"]

    if src is type(None):
        return [f"{where}: produced value may be None but consumer requires {_name(dst)}"]

    src_origin, dst_origin = get_origin(src), get_origin(dst)

    if src_origin is Literal and dst_origin is Literal:
        extra = set(get_args(src)) - set(get_args(dst))
        if extra:
            return [f"{where}: values {sorted(map(str, extra))} are not accepted by consumer"]
        return []

    if src_origin is Literal and isinstance(dst, type):
        if all(isinstance(v, dst) for v in get_args(src)):
            return []
        return [f"{where}: Literal values do not fit {_name(dst)}"]

    if _is_model(src) and _is_model(dst):
        return check_compatibility(src, dst, prefix=f"{where}.")

    if src_origin in (list, tuple, set) and dst_origin in (list, tuple, set):
        src_args, dst_args = get_args(src), get_args(dst)
        if not src_args or not dst_args:
            return []
        return _compare(src_args[0], dst_args[0], f"{where}[]")

    if src_origin is dict and dst_origin is dict:
        src_args, dst_args = get_args(src), get_args(dst)
        if len(src_args) < 2 or len(dst_args) < 2:
            return []
        return _compare(src_args[1], dst_args[1], f"{where}{{}}")

    if src is int and dst is float:
        return []

    return [f"{where}: {_name(src)} does not fit {_name(dst)}"]


def check_compatibility(
    producer: type[BaseModel],
    consumer: type[BaseModel],
    prefix: str = "",
) -> list[str]:
    """Return human-readable incompatibilities (empty list means compatible)."""
    produced = {wire_key(name, f): f for name, f in producer.model_fields.items()}
    issues: list[str] = []
    for name, field in consumer.model_fields.items():
        key = wire_key(name, field)
        where = f"{prefix}{key}"
        source = produced.get(key)
        if source is None:
            if field.is_required():
                issues.append(
                    f"{where}: required by {consumer.__name__} but not produced by {producer.__name__}"
                )
            continue
        issues.extend(_compare(source.annotation, field.annotation, where))
    return issues
