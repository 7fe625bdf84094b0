"""Self-contained test scripts executed inside the sandbox.

Every builder returns source for the target runtime that tests the
candidate against all examples and prints exactly one JSON object on
stdout.  Regex scripts print the ``TestResult`` wire shape::

    {"passed", "total", "passedCount", "failedCount", "results",
     "testMode", "compileError"?}

Literal data is embedded as JSON, never interpolated as code.  The
scripts use only the runtime's standard library so they run in a bare
``python`` or ``node`` sandbox image.
"""
from __future__ import annotations

import json
from string import Template
from typing import TYPE_CHECKING, Any

from regexsmith_core.types import CaptureRequest, MatchRequest

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from regexsmith_core.types import CodeTest, RegexCandidate, RegexRequest, Runtime


def _js_literal(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True)


def _py_literal(value: Any) -> str:
    # A Python string literal holding JSON, decoded with json.loads.
    return repr(json.dumps(value, ensure_ascii=True))


def compare_groups(
    expected: Sequence[str | None] | None,
    actual: Sequence[str | None] | None,
) -> bool:
    """Positional group comparison used by the capture scripts.

    Order-sensitive and null-aware: ``None`` only equals ``None`` and
    never ``""``; a missing match (``actual is None``) only equals a
    missing expectation.
    """
    if expected is None or actual is None:
        return expected is None and actual is None
    return list(expected) == list(actual)


def compare_named_groups(
    expected: Mapping[str, str | None] | None,
    actual: Mapping[str, str | None] | None,
) -> bool:
    """Named group comparison: key sets and values must be identical."""
    if expected is None:
        return True
    if actual is None:
        return False
    return dict(expected) == dict(actual)


# ── JavaScript ───────────────────────────────────────────────────────

_JS_PRELUDE = """\
function finish(results, compileError, testMode) {
  const passedCount = results.filter((r) => r.passed).length;
  const output = {
    passed: compileError === null && passedCount === results.length,
    total: results.length,
    passedCount,
    failedCount: results.length - passedCount,
    results,
    testMode,
  };
  if (compileError !== null) output.compileError = compileError;
  console.log(JSON.stringify(output));
}
"""

_JS_MATCH = Template(_JS_PRELUDE + """
const pattern = $pattern;
const flags = $flags;
const shouldMatch = $should_match;
const shouldNotMatch = $should_not_match;

const results = [];
let compileError = null;

try {
  const regex = new RegExp(pattern, flags);
  const cases = shouldMatch.map((input) => [input, true])
    .concat(shouldNotMatch.map((input) => [input, false]));
  for (const [input, expected] of cases) {
    regex.lastIndex = 0;
    const actual = regex.test(input);
    results.push({ input, expected, actual, passed: actual === expected });
  }
} catch (e) {
  compileError = String(e && e.message ? e.message : e);
  results.length = 0;
}

finish(results, compileError, "match");
""")

_JS_CAPTURE = Template(_JS_PRELUDE + """
const pattern = $pattern;
const flags = $flags;
const captureTests = $capture_tests;

function sameGroups(expected, actual) {
  if (expected === null || actual === null) return expected === null && actual === null;
  if (expected.length !== actual.length) return false;
  return expected.every((value, i) => value === actual[i]);
}

function sameNamedGroups(expected, actual) {
  if (expected === null || expected === undefined) return true;
  if (actual === null) return false;
  const expectedKeys = Object.keys(expected).sort();
  const actualKeys = Object.keys(actual).sort();
  if (expectedKeys.length !== actualKeys.length) return false;
  return expectedKeys.every((key, i) => key === actualKeys[i] && expected[key] === actual[key]);
}

const results = [];
let compileError = null;

try {
  const regex = new RegExp(pattern, flags);
  for (const test of captureTests) {
    regex.lastIndex = 0;
    const match = regex.exec(test.input);
    const actual = match
      ? Array.from(match).slice(1).map((g) => (g === undefined ? null : g))
      : null;
    let actualNamedGroups = null;
    if (match && match.groups) {
      actualNamedGroups = {};
      for (const [key, value] of Object.entries(match.groups)) {
        actualNamedGroups[key] = value === undefined ? null : value;
      }
    }
    const expectedNamed = test.expectedNamedGroups === undefined ? null : test.expectedNamedGroups;
    const passed = sameGroups(test.expectedGroups, actual)
      && sameNamedGroups(expectedNamed, actualNamedGroups);
    const result = { input: test.input, expected: test.expectedGroups, actual, passed };
    if (expectedNamed !== null) {
      result.expectedNamedGroups = expectedNamed;
      result.actualNamedGroups = actualNamedGroups;
    }
    results.push(result);
  }
} catch (e) {
  compileError = String(e && e.message ? e.message : e);
  results.length = 0;
}

finish(results, compileError, "capture");
""")

_JS_CODE = Template("""\
// ==== GENERATED CODE START ====
$code
// ==== GENERATED CODE END ====

const __tests = $tests;
const __results = [];

for (const test of __tests) {
  try {
    const actual = processInput(test.input);
    const expected = test.expectedOutput;
    const passed = JSON.stringify(actual) === JSON.stringify(expected);
    __results.push({ input: test.input, expected, actual: actual === undefined ? null : actual, passed });
  } catch (error) {
    __results.push({
      input: test.input,
      expected: test.expectedOutput,
      actual: null,
      passed: false,
      error: String(error && error.message ? error.message : error),
    });
  }
}

const __passedCount = __results.filter((r) => r.passed).length;
console.log(JSON.stringify({
  passed: __passedCount === __results.length,
  total: __results.length,
  passedCount: __passedCount,
  failedCount: __results.length - __passedCount,
  results: __results,
}));
""")


# ── Python ───────────────────────────────────────────────────────────

_PY_PRELUDE = """\
import json
import re

_FLAG_BITS = {
    "a": re.ASCII, "i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE,
}


def _compile(pattern, flags):
    bits = 0
    for letter in flags:
        bits |= _FLAG_BITS.get(letter, 0)
    return re.compile(pattern, bits)


def _finish(results, compile_error, test_mode):
    passed_count = sum(1 for r in results if r["passed"])
    output = {
        "passed": compile_error is None and passed_count == len(results),
        "total": len(results),
        "passedCount": passed_count,
        "failedCount": len(results) - passed_count,
        "results": results,
        "testMode": test_mode,
    }
    if compile_error is not None:
        output["compileError"] = compile_error
    print(json.dumps(output))
"""

_PY_MATCH = Template(_PY_PRELUDE + """

pattern = json.loads($pattern)
flags = json.loads($flags)
should_match = json.loads($should_match)
should_not_match = json.loads($should_not_match)

results = []
compile_error = None

try:
    regex = _compile(pattern, flags)
except (re.error, OverflowError, ValueError) as e:
    compile_error = str(e)
else:
    cases = [(s, True) for s in should_match] + [(s, False) for s in should_not_match]
    for inp, expected in cases:
        actual = regex.search(inp) is not None
        results.append({"input": inp, "expected": expected, "actual": actual, "passed": actual == expected})

_finish(results, compile_error, "match")
""")

_PY_CAPTURE = Template(_PY_PRELUDE + """

pattern = json.loads($pattern)
flags = json.loads($flags)
capture_tests = json.loads($capture_tests)

results = []
compile_error = None

try:
    regex = _compile(pattern, flags)
except (re.error, OverflowError, ValueError) as e:
    compile_error = str(e)
else:
    for test in capture_tests:
        match = regex.search(test["input"])
        actual = list(match.groups()) if match else None
        actual_named = dict(match.groupdict()) if match and regex.groupindex else None
        expected = test["expectedGroups"]
        expected_named = test.get("expectedNamedGroups")
        passed = actual is not None and actual == expected if expected is not None else actual is None
        if expected_named is not None:
            passed = passed and actual_named is not None and actual_named == expected_named
        result = {"input": test["input"], "expected": expected, "actual": actual, "passed": passed}
        if expected_named is not None:
            result["expectedNamedGroups"] = expected_named
            result["actualNamedGroups"] = actual_named
        results.append(result)

_finish(results, compile_error, "capture")
""")

_PY_CODE = Template("""\
import json

# ==== GENERATED CODE START ====
$code
# ==== GENERATED CODE END ====

__tests = json.loads($tests)
__results = []

for __test in __tests:
    try:
        __actual = process_input(__test["input"])
        __expected = __test["expectedOutput"]
        __passed = json.dumps(__actual, sort_keys=True) == json.dumps(__expected, sort_keys=True)
        __results.append({"input": __test["input"], "expected": __expected, "actual": __actual, "passed": __passed})
    except Exception as __e:
        __results.append({
            "input": __test["input"],
            "expected": __test["expectedOutput"],
            "actual": None,
            "passed": False,
            "error": str(__e),
        })

__passed_count = sum(1 for r in __results if r["passed"])
print(json.dumps({
    "passed": __passed_count == len(__results),
    "total": len(__results),
    "passedCount": __passed_count,
    "failedCount": len(__results) - __passed_count,
    "results": __results,
}, default=repr))
""")


# ── Builders ─────────────────────────────────────────────────────────

def build_js_match_script(regex: RegexCandidate, request: MatchRequest) -> str:
    return _JS_MATCH.substitute(
        pattern=_js_literal(regex.pattern),
        flags=_js_literal(regex.flags),
        should_match=_js_literal(list(request.should_match)),
        should_not_match=_js_literal(list(request.should_not_match)),
    )


def build_python_match_script(regex: RegexCandidate, request: MatchRequest) -> str:
    return _PY_MATCH.substitute(
        pattern=_py_literal(regex.pattern),
        flags=_py_literal(regex.flags),
        should_match=_py_literal(list(request.should_match)),
        should_not_match=_py_literal(list(request.should_not_match)),
    )


def build_js_capture_script(regex: RegexCandidate, request: CaptureRequest) -> str:
    return _JS_CAPTURE.substitute(
        pattern=_js_literal(regex.pattern),
        flags=_js_literal(regex.flags),
        capture_tests=_js_literal([t.to_dict() for t in request.capture_tests]),
    )


def build_python_capture_script(
    regex: RegexCandidate, request: CaptureRequest
) -> str:
    return _PY_CAPTURE.substitute(
        pattern=_py_literal(regex.pattern),
        flags=_py_literal(regex.flags),
        capture_tests=_py_literal([t.to_dict() for t in request.capture_tests]),
    )


def build_regex_test_script(
    regex: RegexCandidate, request: RegexRequest, runtime: Runtime
) -> str:
    """Pick the builder for the request's test mode and *runtime*."""
    match request:
        case MatchRequest():
            if runtime == "python":
                return build_python_match_script(regex, request)
            return build_js_match_script(regex, request)
        case CaptureRequest():
            if runtime == "python":
                return build_python_capture_script(regex, request)
            return build_js_capture_script(regex, request)
        case _:
            raise TypeError(f"Unsupported request type: {type(request).__name__}")


def build_free_code_script(
    code: str, tests: Sequence[CodeTest], runtime: Runtime
) -> str:
    """Wrap generated code in a harness that runs every test case."""
    data = [t.to_dict() for t in tests]
    if runtime == "python":
        return _PY_CODE.substitute(code=code, tests=_py_literal(data))
    return _JS_CODE.substitute(code=code, tests=_js_literal(data))
