"""pm2 document renderer.

CONTRACT
- Inputs: MinerConfig, AppSettings
- Outputs (required):
  - JSON text in pm2 ecosystem format: {"apps": [{name, cwd, script, interpreter, args, env}]}
  - <checkout>/pm2_miner_config.json when written
- Invariants:
  - Same MinerConfig -> byte-identical document (sorted keys, fixed indent)
  - Values are serialized by json, never concatenated; args are a JSON array
  - Document is validated against DOCUMENT_SCHEMA before it is returned
- Failure:
  - Raises FatalAbort if the document fails validation or cannot be written
"""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger

from .config import AppSettings
from .errors import FatalAbort
from .models import MinerConfig, SupervisorProcessSpec

DOCUMENT_SCHEMA = {
    "type": "object",
    "required": ["apps"],
    "properties": {
        "apps": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["name", "cwd", "script", "interpreter", "args"],
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "cwd": {"type": "string", "minLength": 1},
                    "script": {"type": "string", "minLength": 1},
                    "interpreter": {"type": "string", "minLength": 1},
                    "args": {"type": "array", "items": {"type": "string"}},
                    "env": {"type": "object", "additionalProperties": {"type": "string"}},
                },
            },
        }
    },
}


def build_process_spec(config: MinerConfig, app: AppSettings) -> SupervisorProcessSpec:
    return SupervisorProcessSpec(
        name=app.process_name,
        cwd=str(config.working_directory),
        script=app.script,
        interpreter=str(config.interpreter_path),
        args=[*config.miner_args(), *app.extra_args],
        env=dict(config.extra_env),
    )


def render_document(config: MinerConfig, app: AppSettings) -> str:
    import jsonschema  # lazy import

    document = build_process_spec(config, app).to_document()
    try:
        jsonschema.validate(instance=document, schema=DOCUMENT_SCHEMA)
    except jsonschema.ValidationError as e:
        raise FatalAbort(f"Rendered pm2 document is invalid: {e.message}") from e
    return json.dumps(document, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def write_document(config: MinerConfig, app: AppSettings, path: Path) -> Path:
    text = render_document(config, app)
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise FatalAbort(f"Failed to write pm2 configuration {path}: {e.strerror}") from e
    logger.info(f"PM2 configuration file created at {path}")
    return path
