"""Functions callable from document expressions.

Every function is a `Function`: a named parameter list plus a Python
implementation. Calls with the wrong number of arguments, and
implementations that raise, surface as `FunctionCallError` so the evaluator
can report them at the call site.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import math
import re
import uuid
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import quote_plus

from injector.core.crypto import Decryptor
from injector.core.exceptions import CryptoError, DecryptionError, FunctionCallError
from injector.core.models import Diagnostic, Diagnostics
from injector.core.settings import PRIVATE_KEYSET_PREFIX, Settings


def call_error(summary: str, detail: str = "") -> FunctionCallError:
    """Build the error a function raises for a failed call."""
    return FunctionCallError(Diagnostics([Diagnostic.error(summary, detail)]))


class Function:
    """A callable exposed to document expressions."""

    def __init__(
        self,
        name: str,
        params: list[str],
        impl: Callable[..., Any],
        var_param: str | None = None,
    ) -> None:
        self.name = name
        self.params = list(params)
        self.var_param = var_param
        self._impl = impl

    def __repr__(self) -> str:
        return f"Function({self.name!r}, params={self.params!r})"

    def __call__(self, *args: Any) -> Any:
        expected = len(self.params)
        if len(args) < expected or (self.var_param is None and len(args) > expected):
            wanted = f"at least {expected}" if self.var_param else str(expected)
            raise call_error(
                "Wrong number of arguments",
                f'Function "{self.name}" expects {wanted} argument(s), but {len(args)} were given.',
            )
        try:
            return self._impl(*args)
        except FunctionCallError:
            raise
        except (TypeError, ValueError, KeyError, IndexError, AttributeError) as e:
            raise call_error(
                "Error in function call",
                f'Call to function "{self.name}" failed: {e}.',
            ) from e


def _number(value: Any) -> int | float:
    if isinstance(value, bool):
        raise TypeError("number required")
    if isinstance(value, (int, float)):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        return float(value)


def _string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(int(value)) if float(value).is_integer() else str(value)
    if isinstance(value, str):
        return value
    raise TypeError("string required")


def _base64decode(s: Any) -> str:
    try:
        return base64.b64decode(_string(s), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ValueError(f"the given value is not valid base64: {e}") from e


def _coalesce(*values: Any) -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    raise ValueError("no non-null, non-empty-string arguments")


def _concat(*lists: Any) -> list:
    result: list = []
    for item in lists:
        if not isinstance(item, list):
            raise TypeError("all arguments must be lists or tuples")
        result.extend(item)
    return result


def _join(separator: Any, *lists: Any) -> str:
    return _string(separator).join(_string(v) for v in _concat(*lists))


def _merge(*maps: Any) -> dict:
    result: dict = {}
    for item in maps:
        if item is None:
            continue
        if not isinstance(item, dict):
            raise TypeError("arguments must be maps or objects")
        result.update(item)
    return result


def _replace(s: Any, substr: Any, replacement: Any) -> str:
    s, substr, replacement = _string(s), _string(substr), _string(replacement)
    if len(substr) > 1 and substr.startswith("/") and substr.endswith("/"):
        pattern = re.compile(substr[1:-1])
        return pattern.sub(re.sub(r"\$\{?(\w+)\}?", r"\\g<\1>", replacement), s)
    return s.replace(substr, replacement)


def _substr(s: Any, offset: Any, length: Any) -> str:
    s = _string(s)
    offset, length = int(_number(offset)), int(_number(length))
    if offset < 0:
        offset = max(len(s) + offset, 0)
    if length < 0:
        return s[offset:]
    return s[offset : offset + length]


def _title(s: Any) -> str:
    return re.sub(r"(^|\s)(\S)", lambda m: m.group(1) + m.group(2).upper(), _string(s))


def _trimprefix(s: Any, prefix: Any) -> str:
    return _string(s).removeprefix(_string(prefix))


def _trimsuffix(s: Any, suffix: Any) -> str:
    return _string(s).removesuffix(_string(suffix))


def _keys(m: Any) -> list:
    if not isinstance(m, dict):
        raise TypeError("map or object required")
    return sorted(m)


def _values(m: Any) -> list:
    return [m[k] for k in _keys(m)]


def _length(value: Any) -> int:
    if isinstance(value, (str, list, dict)):
        return len(value)
    raise TypeError("collection or string required")


def _zipmap(keys: Any, values: Any) -> dict:
    if len(keys) != len(values):
        raise ValueError("number of keys and values must match")
    return {_string(k): v for k, v in zip(keys, values)}


def _digest(algorithm: str) -> Callable[[Any], str]:
    def impl(s: Any) -> str:
        return hashlib.new(algorithm, _string(s).encode("utf-8")).hexdigest()

    return impl


def make_decrypt_function(environ: Mapping[str, str] | None = None) -> Function:
    """Build `decrypt(key_name, ciphertext_b64)` over an environment.

    The private keyset for `key_name` is read, base64 encoded, from
    `PRIVATE_JSON_KEYSET_<key_name>`.
    """
    def impl(key_name: Any, ciphertext_b64: Any) -> str:
        key_name, ciphertext_b64 = _string(key_name), _string(ciphertext_b64)
        var = PRIVATE_KEYSET_PREFIX + key_name
        keyset_b64 = Settings.from_env(environ).private_keysets.get(key_name)
        if not keyset_b64:
            raise call_error(
                "Missing private key",
                f"Environment variable {var} is not set; it must hold the base64 private keyset "
                f'for public key "{key_name}".',
            )
        try:
            keyset = base64.b64decode(keyset_b64, validate=True)
            ciphertext = base64.b64decode(ciphertext_b64, validate=True)
        except binascii.Error as e:
            raise call_error("Cannot base64 decode", f"Invalid base64 for key {key_name}: {e}.") from e
        try:
            plaintext = Decryptor(keyset).decrypt(ciphertext)
        except DecryptionError as e:
            raise call_error("Cannot decrypt", str(e)) from e
        except CryptoError as e:
            raise call_error("Invalid private keyset", f"{var}: {e}") from e
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise call_error("Cannot decrypt", "Decrypted value is not valid UTF-8.") from e

    return Function("decrypt", ["key_name", "ciphertext"], impl)


def builtin_functions(environ: Mapping[str, str] | None = None) -> dict[str, Function]:
    """The functions every document can call."""
    functions = [
        Function("abs", ["num"], lambda n: abs(_number(n))),
        Function("base64decode", ["str"], _base64decode),
        Function("base64encode", ["str"], lambda s: base64.b64encode(_string(s).encode("utf-8")).decode("ascii")),
        Function("ceil", ["num"], lambda n: math.ceil(_number(n))),
        Function("chomp", ["str"], lambda s: re.sub(r"(?:\r?\n)+$", "", _string(s))),
        Function("coalesce", [], _coalesce, var_param="vals"),
        Function("concat", [], _concat, var_param="seqs"),
        Function("contains", ["list", "value"], lambda lst, v: v in lst),
        make_decrypt_function(environ),
        Function("floor", ["num"], lambda n: math.floor(_number(n))),
        Function("join", ["separator"], _join, var_param="lists"),
        Function("jsondecode", ["str"], lambda s: json.loads(_string(s))),
        Function("jsonencode", ["val"], lambda v: json.dumps(v, separators=(",", ":"))),
        Function("keys", ["inputMap"], _keys),
        Function("length", ["value"], _length),
        Function("lower", ["str"], lambda s: _string(s).lower()),
        Function("max", [], lambda *ns: max(_number(n) for n in ns), var_param="numbers"),
        Function("md5", ["str"], _digest("md5")),
        Function("merge", [], _merge, var_param="maps"),
        Function("min", [], lambda *ns: min(_number(n) for n in ns), var_param="numbers"),
        Function("replace", ["str", "substr", "replace"], _replace),
        Function("sha1", ["str"], _digest("sha1")),
        Function("sha256", ["str"], _digest("sha256")),
        Function("sha512", ["str"], _digest("sha512")),
        Function("split", ["separator", "str"], lambda sep, s: _string(s).split(_string(sep))),
        Function("strrev", ["str"], lambda s: _string(s)[::-1]),
        Function("substr", ["str", "offset", "length"], _substr),
        Function("title", ["str"], _title),
        Function("trim", ["str", "cutset"], lambda s, c: _string(s).strip(_string(c))),
        Function("trimprefix", ["str", "prefix"], _trimprefix),
        Function("trimspace", ["str"], lambda s: _string(s).strip()),
        Function("trimsuffix", ["str", "suffix"], _trimsuffix),
        Function("upper", ["str"], lambda s: _string(s).upper()),
        Function("urlencode", ["str"], lambda s: quote_plus(_string(s))),
        Function("uuidv4", [], lambda: str(uuid.uuid4())),
        Function("values", ["mapping"], _values),
        Function("zipmap", ["keys", "values"], _zipmap),
    ]
    return {f.name: f for f in functions}
