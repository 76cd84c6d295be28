"""
Jupyter Server extension: exposes the gather endpoints
 - POST /cellgather/log       record a finished cell execution
 - POST /cellgather/gather    gathered program for a logged cell
 - POST /cellgather/reset     drop a session's log (kernel restart)
 - POST /cellgather/notebook  gather a cell of a saved notebook

Sessions are keyed by the client-supplied "session" value. Handlers run on
the server's IOLoop thread, so calls against one session never interleave.
"""
import os
from typing import Any, Dict, Optional

from jupyter_server.base.handlers import APIHandler
from jupyter_server.utils import url_path_join

from cellgather import (
    Cell,
    GatherExecution,
    SliceConfiguration,
    cells_from_notebook,
    load_slice_configuration,
)
from cellgather.gather import DEFAULT_CELL_MARKER

GatherConfig = Dict[str, Any]

DEFAULT_GATHER_SETTINGS: GatherConfig = {
    "rules_path": None,
    "include_pure_calls": False,
    "cell_marker": DEFAULT_CELL_MARKER,
    "include_header": True,
}


class _GatherHandler(APIHandler):
    @property
    def sessions(self) -> Dict[str, GatherExecution]:
        return self.settings.setdefault("cellgather_sessions", {})

    @property
    def gather_config(self) -> GatherConfig:
        return self.settings.get("cellgather_config", DEFAULT_GATHER_SETTINGS)

    @property
    def slice_configuration(self) -> SliceConfiguration:
        return self.settings.get("cellgather_configuration") or SliceConfiguration()

    def _new_gatherer(self) -> GatherExecution:
        config = self.gather_config
        return GatherExecution(
            self.slice_configuration,
            cell_marker=config.get("cell_marker") or DEFAULT_CELL_MARKER,
            include_header=bool(config.get("include_header", True)),
        )

    def _session(self, session_id: str) -> GatherExecution:
        gatherer = self.sessions.get(session_id)
        if gatherer is None:
            gatherer = self._new_gatherer()
            self.sessions[session_id] = gatherer
            self.log.info("CellGather session %s started", session_id)
        return gatherer

    def _fail(self, status: int, message: str) -> None:
        self.set_status(status)
        self.finish({"error": message})


class LogHandler(_GatherHandler):
    def post(self):
        data = self.get_json_body() or {}
        session_id = data.get("session")
        if not session_id:
            self._fail(400, "missing 'session'")
            return
        try:
            cell = _cell_from_json(data.get("cell"))
            logged = self._session(session_id).post_execute(cell)
        except ValueError as exc:
            self._fail(400, str(exc))
            return
        payload: Dict[str, Any] = {
            "logged": logged is not None,
            "log_length": len(self._session(session_id).execution_slicer),
        }
        if logged is not None:
            payload["diagnostics"] = [
                {"line": d.line, "message": d.message} for d in logged.diagnostics
            ]
        self.finish(payload)


class GatherHandler(_GatherHandler):
    def post(self):
        data = self.get_json_body() or {}
        session_id = data.get("session")
        gatherer = self.sessions.get(session_id) if session_id else None
        try:
            cell = _cell_from_json(data.get("cell"))
        except ValueError as exc:
            self._fail(400, str(exc))
            return
        if gatherer is None:
            self.finish({"code": "", "cells": []})
            return
        merged = gatherer.gather_slice(cell)
        self.finish({
            "code": gatherer.gather_code(cell),
            "cells": merged.to_dict()["cells"] if merged is not None else [],
        })


class ResetHandler(_GatherHandler):
    def post(self):
        data = self.get_json_body() or {}
        session_id = data.get("session")
        if not session_id:
            self._fail(400, "missing 'session'")
            return
        dropped = self.sessions.pop(session_id, None) is not None
        if dropped:
            self.log.info("CellGather session %s reset", session_id)
        self.finish({"reset": dropped})


class NotebookHandler(_GatherHandler):
    def post(self):
        data = self.get_json_body() or {}
        nb_path = data.get("notebook")
        count = data.get("execution_count")
        if not nb_path or not isinstance(count, int):
            self._fail(400, "provide 'notebook' and integer 'execution_count'")
            return
        try:
            cells = cells_from_notebook(nb_path)
        except (OSError, ValueError) as exc:
            self._fail(400, f"cannot read notebook: {exc}")
            return
        gatherer = self._new_gatherer()
        target: Optional[Cell] = None
        for cell in cells:
            gatherer.post_execute(cell)
            if cell.execution_count == count:
                target = cell
        if target is None:
            self._fail(404, f"no cell with execution count {count} in {nb_path}")
            return
        self.finish({"code": gatherer.gather_code(target)})


def _cell_from_json(data: Any) -> Cell:
    if not isinstance(data, dict):
        raise ValueError("missing 'cell' object")
    cell_id = data.get("id")
    count = data.get("execution_count")
    if not cell_id:
        raise ValueError("cell needs an 'id'")
    if not isinstance(count, int) or isinstance(count, bool):
        raise ValueError("cell needs an integer 'execution_count'")
    text = data.get("text")
    if text is None:
        source = data.get("source") or ""
        text = "".join(source) if isinstance(source, list) else str(source)
    return Cell(
        id=str(cell_id),
        text=text.rstrip(),
        execution_count=count,
        execution_event_id=data.get("execution_event_id"),
        persistent_id=data.get("persistent_id"),
        has_error=bool(data.get("has_error", False)),
        outputs=data.get("outputs"),
    )


def setup_handlers(server_app):
    host_app = server_app.web_app
    base_url = host_app.settings.get("base_url", "/")
    pattern = url_path_join(base_url, "cellgather")
    config = _load_gather_config(server_app)
    host_app.settings["cellgather_config"] = config
    host_app.settings["cellgather_configuration"] = load_slice_configuration(
        config.get("rules_path"),
        include_pure_calls=bool(config.get("include_pure_calls")),
    )
    host_app.settings["cellgather_sessions"] = {}
    host_app.add_handlers(".*$", [
        (url_path_join(pattern, "log"), LogHandler),
        (url_path_join(pattern, "gather"), GatherHandler),
        (url_path_join(pattern, "reset"), ResetHandler),
        (url_path_join(pattern, "notebook"), NotebookHandler),
    ])


def _env_flag(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _load_gather_config(server_app) -> GatherConfig:
    # Priority: environment variables > explicit config > defaults
    config_section = server_app.config.get("CellGather", {})
    env_rules = os.getenv("CELLGATHER_RULES")
    env_pure = os.getenv("CELLGATHER_PURE_CALLS")
    env_marker = os.getenv("CELLGATHER_CELL_MARKER")
    env_header = os.getenv("CELLGATHER_HEADER")

    cfg = dict(DEFAULT_GATHER_SETTINGS)
    cfg.update({k: v for k, v in config_section.items() if v is not None})

    if env_rules:
        cfg["rules_path"] = env_rules
    if env_pure:
        cfg["include_pure_calls"] = _env_flag(env_pure)
    if env_marker:
        cfg["cell_marker"] = env_marker
    if env_header:
        cfg["include_header"] = _env_flag(env_header)

    return cfg
