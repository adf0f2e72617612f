from typing import Dict

import requests
from flask import current_app


TIMEOUT_MESSAGE = "Error: Execution timed out (10 second limit)"


def _format_result(result: dict) -> Dict:
    run = result.get("run")
    if run:
        output = run.get("output") or ""
        if run.get("stderr") and run["stderr"] not in output:
            output += "\n" + run["stderr"]
        if run.get("signal") == "SIGKILL":
            output = TIMEOUT_MESSAGE
        return {"output": output.strip() or "No output", "exitCode": run.get("code") or 0}

    compile_step = result.get("compile") or {}
    if compile_step.get("stderr"):
        return {"output": ("Compilation Error:\n" + compile_step["stderr"]).strip(), "exitCode": 1}
    return {"output": "No output", "exitCode": 0}


def execute_code(code: str, language: str = "javascript") -> Dict:
    """Run code in the Piston sandbox; failures come back as output text."""
    if not code or not code.strip():
        return {"output": "Error: Code is required", "exitCode": 1}

    payload = {
        "language": language or "javascript",
        "version": "*",
        "files": [{"name": "main", "content": code}],
        "run_timeout": int(current_app.config.get("CODE_RUN_TIMEOUT_MS", 10000)),
    }
    try:
        response = requests.post(
            current_app.config["PISTON_API_URL"],
            json=payload,
            timeout=float(current_app.config.get("CODE_REQUEST_TIMEOUT_SECONDS", 30)),
        )
        response.raise_for_status()
        result = response.json()
    except (requests.RequestException, ValueError) as exc:
        current_app.logger.warning("Code execution failed: %s", exc)
        return {"output": f"Error: {exc}", "exitCode": 1}
    return _format_result(result)
