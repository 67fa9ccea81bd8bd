from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from canteen.api.utils import now_utc
from canteen.core.config import get_settings
from canteen.core.errors import ValidationError
from canteen.core.logging import configure_logging
from canteen.domain.orders.commands import OrderService
from canteen.domain.orders.models import OrderState
from canteen.domain.orders.projections import project_live_queue
from canteen.persistence.legacy import legacy_document_to_row
from canteen.persistence.models import OrderModel, QueueCounterModel
from canteen.persistence.pg import init_db, session_scope

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Canteen order queue operator CLI")
    top = parser.add_subparsers(dest="command", required=True)

    top.add_parser("init-db", help="Create database tables")

    queue = top.add_parser("queue", help="Print the live queue")
    queue.add_argument("--status", choices=[state.value for state in OrderState], default=None)

    reap = top.add_parser("reap", help="Cancel orders stuck before payment")
    reap.add_argument("--older-than-minutes", type=int, default=None)

    importer = top.add_parser("import-legacy", help="Import exported legacy order documents (JSON list)")
    importer.add_argument("path", help="Path to a JSON file containing a list of order documents")
    importer.add_argument("--batch-id", default=None, help="Batch for imported queue numbers (default: active batch)")

    return parser


def _print(payload: dict) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _show_queue(args: argparse.Namespace) -> int:
    service = OrderService()
    status = OrderState(args.status) if args.status else None
    orders = project_live_queue(service.repository.list_orders(), status=status)
    _print(
        {
            "count": len(orders),
            "orders": [
                {
                    "queue_number": order.queue_number,
                    "id": order.id,
                    "order_state": order.order_state.value,
                    "estimated_minutes": order.estimated_minutes,
                }
                for order in orders
            ],
        }
    )
    return 0


def _reap(args: argparse.Namespace) -> int:
    cancelled = OrderService().cancel_stale_orders(older_than_minutes=args.older_than_minutes)
    _print({"cancelled": cancelled, "count": len(cancelled)})
    return 0


def _import_legacy(args: argparse.Namespace) -> int:
    documents = json.loads(Path(args.path).read_text(encoding="utf-8"))
    if not isinstance(documents, list):
        raise SystemExit("legacy export must be a JSON list of order documents")

    batch_id = args.batch_id or get_settings().active_batch_id
    imported, skipped, invalid, highest = 0, 0, 0, 0
    with session_scope() as session:
        for document in documents:
            try:
                row = legacy_document_to_row(document, batch_id=batch_id)
            except ValidationError as exc:
                logger.warning("skipping legacy document %s: %s", document.get("id") or document.get("orderId"), exc)
                invalid += 1
                continue
            if session.get(OrderModel, row.order_id) is not None:
                skipped += 1
                continue
            session.add(row)
            imported += 1
            highest = max(highest, row.queue_number or 0)

        # Imported tickets must not be handed out again by the counter.
        counter = session.get(QueueCounterModel, batch_id)
        if counter is None and highest:
            session.add(QueueCounterModel(batch_id=batch_id, sequence_value=highest, updated_at=now_utc()))
        elif counter is not None and highest > counter.sequence_value:
            counter.sequence_value = highest
            counter.updated_at = now_utc()
    logger.info("imported %s legacy order(s), skipped %s existing, %s invalid", imported, skipped, invalid)
    _print({"imported": imported, "skipped": skipped, "invalid": invalid})
    return 0


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    parser = _build_parser()
    args = parser.parse_args(argv)

    init_db()
    if args.command == "init-db":
        _print({"status": "ok"})
        return 0
    if args.command == "queue":
        return _show_queue(args)
    if args.command == "reap":
        return _reap(args)
    if args.command == "import-legacy":
        return _import_legacy(args)

    parser.error("unsupported command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
