from datetime import datetime, timezone
from typing import Any, Dict


def build_trace_entry(
    stage: str,
    model: str,
    input: Any,
    output: Any,
    explanation: str = "",
) -> Dict[str, Any]:
    return {
        "stage": stage,
        "model": model,
        "input": input,
        "output": output,
        "explanation": explanation,
        "logged_at": datetime.now(timezone.utc).isoformat(),
    }
