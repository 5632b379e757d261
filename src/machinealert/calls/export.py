"""
CSV export of the logistics call table.
"""

import csv
import io
from collections.abc import Iterable
from zoneinfo import ZoneInfo

from machinealert.calls.models import CallType
from machinealert.calls.schemas import CallResponse

EXPORT_FILENAME = "tabla_logistica.csv"

EXPORT_HEADERS = [
    "Nº DE MÁQUINA",
    "FECHA",
    "HORA LLAMADA",
    "DURACIÓN (MIN)",
    "TIPO",
    "TIEMPO RESTANTE",
    "ESTATUS",
    "HORA TAREA TERMINADA",
]


def format_remaining(seconds: int | None) -> str:
    """Render seconds as ``m:ss``."""
    if not seconds:
        return "0:00"
    minutes, rest = divmod(seconds, 60)
    return f"{minutes}:{rest:02d}"


def export_calls_csv(calls: Iterable[CallResponse], tz: ZoneInfo) -> str:
    """Render projected calls as CSV text with a header row.

    Args:
        calls: Projected call views, already ordered.
        tz: Plant timezone used for the time columns.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(EXPORT_HEADERS)

    for call in calls:
        local_call_time = call.call_time.astimezone(tz)
        completion = (
            call.completion_time.astimezone(tz).strftime("%H:%M:%S")
            if call.completion_time
            else ""
        )
        writer.writerow(
            [
                ", ".join(machine.name for machine in call.machines),
                call.call_date.strftime("%d/%m/%Y"),
                local_call_time.strftime("%H:%M:%S"),
                call.duration,
                "MOLE" if call.call_type is CallType.MOLE else "NORMAL",
                format_remaining(call.remaining_time),
                call.status.value,
                completion,
            ]
        )

    return buffer.getvalue()
