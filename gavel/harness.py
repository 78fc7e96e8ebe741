"""Test harness generation: wrap candidate code so one test case runs through a canonical entry call."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from string import Template
from typing import Any

from gavel.errors import ValidationError
from gavel.models import Language, TestCase

DEFAULT_ENTRYPOINTS = {
    Language.PYTHON: "solve(*__gavel_args)",
    Language.JAVASCRIPT: "solve(...__gavelArgs)",
    Language.JAVA: "Solution.solve(rawArgs)",
    Language.CPP: "solve(rawArgs)",
    Language.C: "solve(argc, argv)",
}

# Used when a problem ships adapter code but no explicit invocation.
ADAPTER_ENTRYPOINTS = {
    Language.PYTHON: "__gavel_entry(*__gavel_args)",
    Language.JAVASCRIPT: "__gavelEntry(...__gavelArgs)",
    Language.JAVA: "GavelAdapter.entry(rawArgs)",
    Language.CPP: "gavel_entry(rawArgs)",
    Language.C: "gavel_entry(argc, argv)",
}

_IMPORT_PATTERNS = {
    Language.PYTHON: [re.compile(r"^(?:from\s+\S+\s+import|import\s+)")],
    Language.JAVASCRIPT: [re.compile(r"^import\s+")],
    Language.JAVA: [re.compile(r"^import\s+.+;")],
    Language.CPP: [re.compile(r"^#include\s+.+"), re.compile(r"^using\s+namespace\s+")],
    Language.C: [re.compile(r"^#include\s+.+")],
}


@dataclass
class ParsedArgs:
    json_args: list[Any] = field(default_factory=list)
    string_args: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Test input parsing
# ---------------------------------------------------------------------------


def stringify_arg(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    try:
        return json.dumps(value, separators=(",", ":"))
    except TypeError:
        return str(value)


def split_top_level(text: str) -> list[str]:
    """Split on commas and newlines that are outside brackets and quotes."""
    parts: list[str] = []
    current: list[str] = []
    depth = 0
    quote: str | None = None
    escaped = False

    for char in text:
        if quote:
            current.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue
        if char in ",\n" and depth == 0:
            segment = "".join(current).strip()
            if segment:
                parts.append(segment)
            current = []
            continue
        current.append(char)
        if char in "\"'":
            quote = char
        elif char in "([{":
            depth += 1
        elif char in ")]}" and depth > 0:
            depth -= 1

    segment = "".join(current).strip()
    if segment:
        parts.append(segment)
    return parts


def _try_parse_literal(value: str) -> Any:
    trimmed = value.strip()
    if not trimmed:
        return ""
    try:
        return json.loads(trimmed)
    except ValueError:
        return trimmed


def _parsed(values: list[Any]) -> ParsedArgs:
    return ParsedArgs(json_args=values, string_args=[stringify_arg(v) for v in values])


def parse_test_input(raw_input: str | None) -> ParsedArgs:
    """Turn a test case's input text into the entry point's argument list.

    Accepted shapes, tried in order:
    1. JSON: an array is the argument list, ``{"args": [...]}`` supplies one,
       any other value is a single argument.
    2. ``name = value`` assignments separated by commas or newlines.
    3. One argument per line.
    4. Whitespace-separated JSON tokens (``2 3``).
    5. Anything else is a single string argument.
    """
    if raw_input is None:
        return ParsedArgs()
    normalized = str(raw_input).replace("\r\n", "\n").strip()
    if not normalized:
        return ParsedArgs()

    try:
        parsed = json.loads(normalized)
    except ValueError:
        pass
    else:
        if isinstance(parsed, list):
            return _parsed(parsed)
        if isinstance(parsed, dict) and isinstance(parsed.get("args"), list):
            return _parsed(parsed["args"])
        return _parsed([parsed])

    assigned = []
    for segment in split_top_level(normalized):
        name, sep, rhs = segment.partition("=")
        if sep and name.strip() and rhs.strip():
            assigned.append(rhs.strip())
    if assigned:
        return ParsedArgs(
            json_args=[_try_parse_literal(v) for v in assigned],
            string_args=assigned,
        )

    lines = [line for line in normalized.split("\n") if line.strip()]
    if len(lines) > 1:
        return _parsed([_try_parse_literal(line) for line in lines])

    tokens = normalized.split()
    if len(tokens) > 1:
        values = []
        for token in tokens:
            try:
                values.append(json.loads(token))
            except ValueError:
                break
        else:
            return _parsed(values)

    return ParsedArgs(json_args=[normalized], string_args=[normalized])


# ---------------------------------------------------------------------------
# Candidate + adapter merging
# ---------------------------------------------------------------------------


@dataclass
class _SourceSections:
    imports: list[str]
    package_lines: list[str]
    body: str


def _split_source_sections(language: Language, source: str) -> _SourceSections:
    """Separate the leading import/include block from the rest of the source."""
    imports: list[str] = []
    packages: list[str] = []
    body: list[str] = []
    patterns = _IMPORT_PATTERNS.get(language, [])
    in_header = True

    for line in source.replace("\r\n", "\n").split("\n"):
        trimmed = line.strip()
        if not trimmed and in_header:
            body.append(line)
            continue
        if language is Language.JAVA and trimmed.startswith("package "):
            packages.append(line)
            continue
        if in_header and any(p.match(trimmed) for p in patterns):
            imports.append(line)
            continue
        in_header = False
        body.append(line)

    return _SourceSections(
        imports=[line for line in imports if line.strip()],
        package_lines=packages,
        body="\n".join(body).strip(),
    )


def merge_source_with_adapter(language: Language, user_code: str, adapter_code: str = "") -> str:
    """Combine candidate and adapter code with line-level import deduplication.

    Only single-line import statements in the leading header block are
    recognized; first occurrence wins.
    """
    user_code = (user_code or "").strip()
    adapter_code = (adapter_code or "").strip()
    if not adapter_code:
        return user_code

    user = _split_source_sections(language, user_code)
    adapter = _split_source_sections(language, adapter_code)

    seen: set[str] = set()
    merged_imports = []
    for line in user.imports + adapter.imports:
        key = line.strip()
        if key in seen:
            continue
        seen.add(key)
        merged_imports.append(key)

    segments = [
        "\n".join(user.package_lines or adapter.package_lines),
        "\n".join(merged_imports),
        user.body,
        adapter.body,
    ]
    return "\n\n".join(s for s in segments if s).strip()


# ---------------------------------------------------------------------------
# Per-language builders
# ---------------------------------------------------------------------------


def _escape_for_double_quotes(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace("\r", "\\r")
        .replace("\n", "\\n")
        .replace('"', '\\"')
    )


def _build_python_harness(code: str, args: ParsedArgs, invocation: str, has_adapter: bool) -> str:
    guard = ""
    if not has_adapter:
        guard = (
            "if 'solve' not in globals():\n"
            "    raise NameError('solve function is not defined. "
            "Please declare def solve(*args): ...')\n"
        )
    args_literal = json.dumps(args.json_args)
    return (
        f"{code}\n\n"
        "import json as __gavel_json\n"
        "import sys as __gavel_sys\n\n"
        f"__gavel_args = __gavel_json.loads({args_literal!r})\n"
        f"{guard}\n"
        "def __gavel_format(value):\n"
        "    if isinstance(value, str):\n"
        "        return value\n"
        "    try:\n"
        "        return __gavel_json.dumps(value, separators=(',', ':'))\n"
        "    except TypeError:\n"
        "        return str(value)\n\n"
        f"__gavel_result = {invocation}\n"
        "__gavel_sys.stdout.write(__gavel_format(__gavel_result))\n"
    )


def _build_javascript_harness(code: str, args: ParsedArgs, invocation: str, has_adapter: bool) -> str:
    guard = ""
    if not has_adapter:
        guard = (
            "if (typeof solve !== 'function') {\n"
            "  throw new Error('solve function is not defined. "
            "Please declare function solve(...args).');\n"
            "}\n"
        )
    return (
        '"use strict";\n'
        f"{code}\n\n"
        f"const __gavelArgs = {json.dumps(args.json_args)};\n"
        f"{guard}"
        "const __gavelFormat = (value) => {\n"
        "  if (value === undefined || value === null) return '';\n"
        "  if (typeof value === 'object') {\n"
        "    try { return JSON.stringify(value); } catch (error) { return String(value); }\n"
        "  }\n"
        "  return String(value);\n"
        "};\n"
        f"const __gavelOutput = {invocation};\n"
        "process.stdout.write(__gavelFormat(__gavelOutput));\n"
    )


_JAVA_TEMPLATE = Template(r"""$code

class Main {
    private static String quote(String text) {
        StringBuilder out = new StringBuilder("\"");
        for (char c : text.toCharArray()) {
            switch (c) {
                case '"': out.append("\\\""); break;
                case '\\': out.append("\\\\"); break;
                case '\n': out.append("\\n"); break;
                case '\r': out.append("\\r"); break;
                case '\t': out.append("\\t"); break;
                default: out.append(c);
            }
        }
        return out.append('"').toString();
    }

    private static String render(Object value, boolean top) {
        if (value == null) return top ? "" : "null";
        if (value instanceof String || value instanceof Character) {
            return top ? value.toString() : quote(value.toString());
        }
        if (value.getClass().isArray()) {
            StringBuilder out = new StringBuilder("[");
            int length = java.lang.reflect.Array.getLength(value);
            for (int i = 0; i < length; i++) {
                if (i > 0) out.append(',');
                out.append(render(java.lang.reflect.Array.get(value, i), false));
            }
            return out.append(']').toString();
        }
        if (value instanceof java.util.Map) {
            StringBuilder out = new StringBuilder("{");
            boolean first = true;
            for (java.util.Map.Entry<?, ?> entry : ((java.util.Map<?, ?>) value).entrySet()) {
                if (!first) out.append(',');
                first = false;
                out.append(quote(String.valueOf(entry.getKey()))).append(':');
                out.append(render(entry.getValue(), false));
            }
            return out.append('}').toString();
        }
        if (value instanceof Iterable) {
            StringBuilder out = new StringBuilder("[");
            boolean first = true;
            for (Object item : (Iterable<?>) value) {
                if (!first) out.append(',');
                first = false;
                out.append(render(item, false));
            }
            return out.append(']').toString();
        }
        return value.toString();
    }

    public static void main(String[] args) throws Exception {
        String[] rawArgs = new String[]{$args};
        Object result = $invocation;
        System.out.print(render(result, true));
    }
}
""")


def _build_java_harness(code: str, args: ParsedArgs, invocation: str, has_adapter: bool) -> str:
    args_literal = ", ".join(f'"{_escape_for_double_quotes(a)}"' for a in args.string_args)
    return _JAVA_TEMPLATE.substitute(code=code, args=args_literal, invocation=invocation)


_CPP_TEMPLATE = Template(r"""#include <bits/stdc++.h>
using namespace std;
$code

template <typename T> string gavel_json(const T& value) {
    ostringstream out;
    out << value;
    return out.str();
}
inline string gavel_json(const string& value) {
    string out = "\"";
    for (char c : value) {
        switch (c) {
            case '"': out += "\\\""; break;
            case '\\': out += "\\\\"; break;
            case '\n': out += "\\n"; break;
            case '\r': out += "\\r"; break;
            case '\t': out += "\\t"; break;
            default: out += c;
        }
    }
    return out + "\"";
}
inline string gavel_json(const char* value) { return value ? gavel_json(string(value)) : string("null"); }
inline string gavel_json(char value) { return gavel_json(string(1, value)); }
inline string gavel_json(bool value) { return value ? "true" : "false"; }
template <typename T> string gavel_json(const vector<T>& value) {
    string out = "[";
    for (size_t i = 0; i < value.size(); ++i) {
        if (i) out += ",";
        out += gavel_json(static_cast<T>(value[i]));
    }
    return out + "]";
}
template <typename T> string gavel_render(const T& value) { return gavel_json(value); }
inline string gavel_render(const string& value) { return value; }
inline string gavel_render(const char* value) { return value ? string(value) : string(); }
inline string gavel_render(char value) { return string(1, value); }

int main() {
    vector<string> rawArgs = $args;
    try {
        auto result = $invocation;
        cout << gavel_render(result);
    } catch (const exception& ex) {
        cerr << "Unhandled exception: " << ex.what() << endl;
        return 1;
    } catch (...) {
        cerr << "Unhandled exception" << endl;
        return 1;
    }
    return 0;
}
""")


def _build_cpp_harness(code: str, args: ParsedArgs, invocation: str, has_adapter: bool) -> str:
    quoted = ", ".join(f'"{_escape_for_double_quotes(a)}"' for a in args.string_args)
    return _CPP_TEMPLATE.substitute(code=code, args=f"{{{quoted}}}", invocation=invocation)


_C_TEMPLATE = Template(r"""#include <stdio.h>
#include <string.h>
$code

int main(void) {
    const int argc = $argc;
    const char* argv[$size] = {
$args
    };
    const char* result = $invocation;
    if (result != NULL) {
        fputs(result, stdout);
    }
    return 0;
}
""")


def _build_c_harness(code: str, args: ParsedArgs, invocation: str, has_adapter: bool) -> str:
    count = len(args.string_args)
    if count:
        args_literal = ",\n".join(f'        "{_escape_for_double_quotes(a)}"' for a in args.string_args)
    else:
        args_literal = '        ""'
    return _C_TEMPLATE.substitute(
        code=code,
        argc=count,
        size=max(count, 1),
        args=args_literal,
        invocation=invocation,
    )


_BUILDERS = {
    Language.PYTHON: _build_python_harness,
    Language.JAVASCRIPT: _build_javascript_harness,
    Language.JAVA: _build_java_harness,
    Language.CPP: _build_cpp_harness,
    Language.C: _build_c_harness,
}


def build_harness(
    language: Language | str,
    code: str,
    test_case: TestCase,
    adapter_code: str = "",
    entry_invocation: str | None = None,
) -> str:
    """Build one self-contained program that runs ``test_case`` against ``code``.

    The program prints the entry point's return value: strings as-is,
    everything else JSON-serialized.
    """
    language = Language.parse(language)
    merged = merge_source_with_adapter(language, code, adapter_code)
    if not merged:
        raise ValidationError("Code cannot be empty. Please implement the required solve function.")

    has_adapter = bool((adapter_code or "").strip())
    invocation = entry_invocation or (
        ADAPTER_ENTRYPOINTS[language] if has_adapter else DEFAULT_ENTRYPOINTS[language]
    )
    args = parse_test_input(test_case.input)
    return _BUILDERS[language](merged, args, invocation, has_adapter)


def describe_language_contract(language: Language | str) -> str:
    """Human-readable entry point contract for a language."""
    contracts = {
        Language.JAVASCRIPT: "function solve(...args) -> string | number | object",
        Language.PYTHON: "def solve(*args) -> str | int | list",
        Language.JAVA: "class Solution { static Object solve(String[] args) }",
        Language.CPP: "auto solve(const vector<string>& args)",
        Language.C: "const char* solve(int argc, const char* argv[])",
    }
    return contracts[Language.parse(language)]
