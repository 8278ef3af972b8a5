"""Scriptable stand-in for the agent runtime, speaking line-delimited JSON.

Commands (the request ``type``):
- get_state: two events, then a successful response with ``{"model": "x"}``
- echo: responds with the request params
- fail: responds with ``success: false``
- hang: never responds
- defer: remembers the request; the next ``flush`` answers flush first, then it
- garbage: writes a malformed line, then responds
- stderr: writes to stderr, then responds
- non_object: writes a JSON array line, then responds
- crash: exits with code 3 without responding
"""

import json
import sys

deferred = []


def send(payload):
    sys.stdout.write(json.dumps(payload) + "\n")
    sys.stdout.flush()


def respond(request, data=None, success=True, error=None):
    message = {"id": request["id"], "type": "response", "command": request["type"], "success": success}
    if data is not None:
        message["data"] = data
    if error is not None:
        message["error"] = error
    send(message)


for line in sys.stdin:
    line = line.strip()
    if not line:
        continue
    request = json.loads(line)
    command = request.get("type")
    if command == "get_state":
        send({"type": "agent_start", "data": {"turn": 1}})
        send({"data": {"note": "untyped"}})
        respond(request, {"model": "x"})
    elif command == "echo":
        respond(request, {key: value for key, value in request.items() if key not in ("id", "type")})
    elif command == "fail":
        respond(request, success=False, error="model not configured")
    elif command == "hang":
        continue
    elif command == "defer":
        deferred.append(request)
    elif command == "flush":
        respond(request, {"flushed": len(deferred)})
        for held in deferred:
            respond(held, {"deferred": True})
        deferred.clear()
    elif command == "garbage":
        sys.stdout.write("not json\n")
        sys.stdout.flush()
        respond(request, {"ok": True})
    elif command == "stderr":
        sys.stderr.write("warning: low disk\n")
        sys.stderr.flush()
        respond(request, {"ok": True})
    elif command == "non_object":
        send([1, 2, 3])
        respond(request, {"ok": True})
    elif command == "crash":
        sys.exit(3)
    else:
        respond(request, success=False, error=f"unknown command: {command}")
