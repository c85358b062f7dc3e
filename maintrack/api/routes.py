"""
All routes attached to app
"""
# ========================================================
# IMPORTS
# ========================================================
import io
from typing import Any, Dict, Optional

from flask import abort, jsonify, request, send_file

# --------------------------------------------------------
# Local Imports
# --------------------------------------------------------
from maintrack.errors import ValidationError
from maintrack.utils.timeutil import parse_timestamp


# ========================================================
# FUNCTIONS
# ========================================================
def _body(optional: bool = False) -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if data is None and optional:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return data


def _timestamp(data: Dict[str, Any], key: str):
    value = data.get(key)
    if value in (None, ""):
        return None
    try:
        return parse_timestamp(str(value))
    except ValueError as e:
        raise ValidationError(f"Invalid date for {key}: {value!r}") from e


def _or_404(record, what: str):
    if record is None:
        abort(404, description=f"{what} not found")
    return record


def _with_warning(payload: Dict[str, Any], warning: Optional[str]) -> Dict[str, Any]:
    if warning:
        payload["warning"] = warning
    return payload


# --------------------------------------------------------
# Routes
# --------------------------------------------------------
def register_routes(app, controller):
    # ---- sections ----
    @app.get("/api/sections")
    def list_sections():
        return jsonify([s.to_dict() for s in controller.list_sections()])

    @app.post("/api/sections")
    def create_section():
        data = _body()
        section = controller.add_section(data.get("name", ""), data.get("description"))
        return jsonify(section.to_dict()), 201

    @app.put("/api/sections/<section_id>")
    def update_section(section_id):
        data = _body()
        section = controller.update_section(section_id, data.get("name", ""), data.get("description"))
        return jsonify(_or_404(section, "Section").to_dict())

    @app.delete("/api/sections/<section_id>")
    def delete_section(section_id):
        controller.delete_section(section_id)
        return "", 204

    # ---- machines ----
    @app.get("/api/sections/<section_id>/machines")
    def list_machines(section_id):
        return jsonify([m.to_dict() for m in controller.list_machines(section_id)])

    @app.post("/api/sections/<section_id>/machines")
    def create_machine(section_id):
        data = _body()
        machine = controller.add_machine(section_id, data.get("name", ""), data.get("code", ""),
                                         data.get("state", "Working"))
        return jsonify(machine.to_dict()), 201

    @app.get("/api/machines/<machine_id>")
    def get_machine(machine_id):
        machine = _or_404(controller.get_machine(machine_id), "Machine")
        schedule = controller.get_schedule(machine_id)
        payload = machine.to_dict()
        payload["schedule"] = schedule.to_dict() if schedule else None
        return jsonify(payload)

    @app.put("/api/machines/<machine_id>")
    def update_machine(machine_id):
        data = _body()
        machine = controller.update_machine(machine_id, data.get("name", ""), data.get("code", ""))
        return jsonify(_or_404(machine, "Machine").to_dict())

    @app.put("/api/machines/<machine_id>/state")
    def set_machine_state(machine_id):
        data = _body()
        machine = controller.set_machine_state(machine_id, data.get("state", ""))
        return jsonify(_or_404(machine, "Machine").to_dict())

    # ---- notes ----
    @app.get("/api/machines/<machine_id>/notes")
    def list_notes(machine_id):
        return jsonify([n.to_dict() for n in controller.list_notes(machine_id)])

    @app.post("/api/machines/<machine_id>/notes")
    def create_note(machine_id):
        data = _body()
        note = controller.add_note(machine_id, data.get("type", "text"), data.get("content", ""),
                                   data.get("description"), data.get("tags"))
        return jsonify(note.to_dict()), 201

    @app.delete("/api/notes/<note_id>")
    def delete_note(note_id):
        controller.delete_note(note_id)
        return "", 204

    # ---- schedules / maintenance ----
    @app.get("/api/machines/<machine_id>/schedules")
    def list_schedules(machine_id):
        return jsonify([s.to_dict() for s in controller.list_schedules(machine_id)])

    @app.put("/api/machines/<machine_id>/schedule")
    def save_schedule(machine_id):
        data = _body()
        result = controller.save_schedule(
            machine_id,
            data.get("recurrence", ""),
            _timestamp(data, "nextDueDate"),
            interval_days=data.get("intervalDays"),
            schedule_id=data.get("id"),
        )
        return jsonify(_with_warning(result.schedule.to_dict(), result.reminder_error))

    @app.delete("/api/schedules/<schedule_id>")
    def delete_schedule(schedule_id):
        if not controller.delete_schedule(schedule_id):
            abort(404, description="Schedule not found")
        return "", 204

    @app.post("/api/machines/<machine_id>/maintenance")
    def complete_maintenance(machine_id):
        data = _body(optional=True)
        result = _or_404(controller.complete_maintenance(
            machine_id,
            notes=data.get("notes"),
            now=_timestamp(data, "attemptedAt"),
            schedule_id=data.get("scheduleId"),
        ), "Machine schedule")
        payload = {
            "event": result.event.to_dict(),
            "machine": result.machine.to_dict(),
            "schedule": result.schedule.to_dict(),
            "duplicate": result.duplicate,
        }
        return jsonify(_with_warning(payload, result.reminder_error)), (200 if result.duplicate else 201)

    @app.get("/api/machines/<machine_id>/events")
    def list_events(machine_id):
        return jsonify([e.to_dict() for e in controller.list_events(machine_id)])

    @app.get("/api/overdue")
    def overdue():
        now = _timestamp(request.args, "now")
        report = controller.overdue_report(now)
        machines = {m.id: m for m in controller.list_machines()}
        items = []
        for s in report.overdue:
            item = s.to_dict()
            machine = machines.get(s.machine_id)
            item["machineName"] = machine.name if machine else None
            item["machineCode"] = machine.code if machine else None
            items.append(item)
        return jsonify(count=report.count, overdue=items)

    # ---- settings ----
    @app.get("/api/settings")
    def get_settings():
        return jsonify(controller.get_settings().to_dict())

    @app.put("/api/settings")
    def update_settings():
        data = _body()
        settings = controller.update_settings(
            notifications_enabled=data.get("notificationsEnabled"),
            dark_mode=data.get("darkMode"),
        )
        return jsonify(settings.to_dict())

    @app.post("/api/demo-data")
    def load_demo_data():
        force = bool(_body(optional=True).get("force", False))
        return jsonify(loaded=controller.load_demo_data(force=force))

    @app.delete("/api/data")
    def clear_data():
        controller.clear_all_data()
        return "", 204

    # ---- export ----
    @app.get("/api/export")
    def export_backup():
        return jsonify(controller.export_backup())

    @app.get("/api/export.xlsx")
    def export_excel():
        buffer = io.BytesIO()
        controller.export_excel(buffer)
        buffer.seek(0)
        return send_file(buffer, mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                         as_attachment=True, download_name="maintenance-overview.xlsx")

    @app.post("/api/backup")
    def backup():
        return jsonify(path=controller.backup()), 201
