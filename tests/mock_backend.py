"""A stand-in analysis backend speaking the line protocol on stdin/stdout.

Run as ``python mock_backend.py [FLAGS...] PROJECT_KEY``.  Replies are
written in small pieces to exercise reassembly on the client side.

Flags:
    --reject-update   answer the update request with ResponseInvalidRequest
    --garbage-errors  answer the error fetch with a line that is not JSON
    --with-error      report a compile error alongside the warning
"""

from __future__ import annotations

import json
import sys


def _span(path, fl, fc, tl, tc):
    return {
        "spanFilePath": path,
        "spanFromLine": fl,
        "spanFromColumn": fc,
        "spanToLine": tl,
        "spanToColumn": tc,
    }


def _reply(tag, contents=None):
    message = {"tag": tag}
    if contents is not None:
        message["contents"] = contents
    data = (json.dumps(message, ensure_ascii=False) + "\n").encode()
    # Uneven chunks, deliberately splitting multibyte characters
    for i in range(0, len(data), 7):
        sys.stdout.buffer.write(data[i:i + 7])
        sys.stdout.buffer.flush()


def _handle(request, key, flags):
    tag = request.get("tag")
    if tag == "RequestUpdateSession" and "--reject-update" in flags:
        _reply("ResponseInvalidRequest", "update not allowed")
    elif tag == "RequestUpdateSession":
        for step in (1, 2):
            _reply("ResponseUpdateSession", {
                "tag": "UpdateStatusProgress",
                "contents": {
                    "progressStep": step,
                    "progressNumSteps": 2,
                    "progressParsedMsg": f"Compiling module {step}",
                },
            })
        _reply("ResponseUpdateSession", {"tag": "UpdateStatusDone"})
    elif tag == "RequestGetSourceErrors" and "--garbage-errors" in flags:
        sys.stdout.buffer.write(b"not json at all\n")
        sys.stdout.buffer.flush()
    elif tag == "RequestGetSourceErrors":
        errors = [{
            "errorKind": "KindWarning",
            "errorSpan": {"tag": "ProperSpan", "contents": _span("src/Main.hs", 2, 1, 2, 4)},
            "errorMsg": "Defined but not used: ‘λx’",
        }]
        if "--with-error" in flags:
            errors.insert(0, {
                "errorKind": "KindError",
                "errorSpan": {"tag": "ProperSpan", "contents": _span("src/Main.hs", 5, 3, 5, 6)},
                "errorMsg": "Variable not in scope: foo",
            })
        _reply("ResponseGetSourceErrors", errors)
    elif tag == "RequestGetLoadedModules":
        _reply("ResponseGetLoadedModules", ["Main", f"{key.title()}.Lib"])
    elif tag == "RequestGetExpTypes":
        _reply("ResponseGetExpTypes", [["Int", request["contents"]]])
    elif tag == "RequestGetSpanInfo":
        _reply("ResponseGetSpanInfo", [])
    elif tag == "RequestShutdown":
        sys.exit(0)
    else:
        _reply("ResponseInvalidRequest", f"unknown request {tag}")


def main():
    key = sys.argv[-1] if len(sys.argv) > 1 else "project"
    flags = set(sys.argv[1:-1])
    print(f"mock backend for {key} starting", file=sys.stderr, flush=True)
    _reply("ResponseWelcome", [0, 1, 0])
    for line in sys.stdin:
        if line.strip():
            _handle(json.loads(line), key, flags)


if __name__ == "__main__":
    main()
