import argparse
import json
import sys
from pathlib import Path

from . import __version__
from .config import Settings, load_env
from .errors import VerificationError
from .logger import get_logger
from .schema import Claims


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def _read_bytes(path_str: str) -> bytes:
    path = Path(path_str)
    if not path.exists():
        raise SystemExit(f"Document not found: {path}")
    return path.read_bytes()


def _session_factory(settings: Settings):
    from .database import get_session_factory, init_database

    init_database(settings.db_path)
    return get_session_factory(settings.db_path)


def _orchestrator(settings: Settings, with_ocr: bool = False):
    from pipelines.verification.orchestrator import VerificationOrchestrator

    from .documents import FileDocumentStore

    ocr_client = None
    if with_ocr:
        from .ocr.client import HttpOcrClient

        try:
            ocr_client = HttpOcrClient(
                settings.ocr_endpoint, api_key=settings.ocr_api_key, timeout=settings.ocr_timeout
            )
        except ValueError as e:
            raise SystemExit(str(e))
    return VerificationOrchestrator.from_settings(
        settings,
        session_factory=_session_factory(settings),
        ocr_client=ocr_client,
        document_store=FileDocumentStore(settings.document_dir),
    )


def cmd_init_db(args: argparse.Namespace, settings: Settings) -> None:
    from .database import init_database

    init_database(settings.db_path)
    print(f"Database ready: {settings.db_path}")


def cmd_submit(args: argparse.Namespace, settings: Settings) -> None:
    claims = Claims(
        name=args.name,
        institution=args.institution,
        program=args.program,
        start_year=args.start_year,
        end_year=args.end_year,
    )
    document = _read_bytes(args.document)
    result = _orchestrator(settings, with_ocr=True).submit(
        args.user, claims, document, institution_id=args.institution_id, filename=Path(args.document).name
    )
    print(f"Request: {result.request_id}")
    print(f"Status: {result.status}")


def cmd_status(args: argparse.Namespace, settings: Settings) -> None:
    view = _orchestrator(settings).get_status(args.request_id, args.user)
    _print_json(view.to_dict())


def cmd_list(args: argparse.Namespace, settings: Settings) -> None:
    views = _orchestrator(settings).list_requests(args.user)
    if not views:
        print("No verification requests.")
        return
    for v in views:
        score = v.latest_attempt.overall_score if v.latest_attempt else None
        score_text = f"{score:.1f}" if score is not None else "-"
        print(f"{v.request_id}  {v.status:<14} score={score_text:<6} {v.claims.institution}")


def cmd_appeal(args: argparse.Namespace, settings: Settings) -> None:
    document = _read_bytes(args.document) if args.document else None
    result = _orchestrator(settings, with_ocr=True).appeal(
        args.request_id,
        args.user,
        args.reason,
        document=document,
        filename=Path(args.document).name if args.document else None,
    )
    print(f"Attempt: {result.attempt_number}")
    print(f"Status: {result.status}")


def cmd_review(args: argparse.Namespace, settings: Settings) -> None:
    status = _orchestrator(settings).manual_review(
        args.request_id, args.decision, notes=args.notes or "", reviewer_id=args.reviewer
    )
    print(f"Status: {status}")


def cmd_queue(args: argparse.Namespace, settings: Settings) -> None:
    views = _orchestrator(settings).review_queue()
    if not views:
        print("Review queue is empty.")
        return
    for v in views:
        print(f"{v.request_id}  user={v.user_id}  {v.escalation_reason or ''}")


def cmd_credentials(args: argparse.Namespace, settings: Settings) -> None:
    from .credentials import CredentialService

    service = CredentialService(_session_factory(settings))
    if args.institution:
        active = service.has_active_credential(args.user, args.institution)
        print("active" if active else "none")
        return
    _print_json([c.to_dict() for c in service.active_credentials(args.user)])


def cmd_sweep(args: argparse.Namespace, settings: Settings) -> None:
    from .cleanup import run_sweep, run_sweep_loop

    orchestrator = _orchestrator(settings)
    if args.loop:
        run_sweep_loop(orchestrator, settings.sweep_interval, settings.stale_attempt_minutes)
        return
    summary = run_sweep(orchestrator, stale_after_minutes=settings.stale_attempt_minutes)
    _print_json(summary.to_dict())


def cmd_extract(args: argparse.Namespace, settings: Settings) -> None:
    from pipelines.extraction import FieldExtractor, classify_document

    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")
    text = input_path.read_text(encoding="utf-8")
    record = FieldExtractor().extract(text, source=input_path.name)
    _print_json({"classification": classify_document(text).to_dict(), "record": record.to_dict()})


def cmd_replay(args: argparse.Namespace, settings: Settings) -> None:
    from pipelines.backfill.replay import replay_attempt

    try:
        report = replay_attempt(_session_factory(settings), args.attempt_id)
    except ValueError as e:
        raise SystemExit(str(e))
    _print_json(report.to_dict())
    if not report.matches:
        raise SystemExit(1)


def cmd_check(args: argparse.Namespace, settings: Settings) -> None:
    from .integrity import check_invariants

    session = _session_factory(settings)()
    try:
        violations = check_invariants(session, max_attempts=settings.max_attempts)
    finally:
        session.close()
    if not violations:
        print("No violations found.")
        return
    print(f"{len(violations)} violation(s):")
    for v in violations:
        print(f" - [{v.rule}] {v.request_id}: {v.message}")
    raise SystemExit(2)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="credverify", description="Academic credential verification")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")
    init = subparsers.add_parser("init-db", help="Create database tables")
    init.set_defaults(func=cmd_init_db)

    sub = subparsers.add_parser("submit", help="Submit claims with a supporting document")
    sub.add_argument("--user", required=True, help="Authenticated user id")
    sub.add_argument("--name", required=True, help="Claimed full name")
    sub.add_argument("--institution", required=True, help="Claimed institution")
    sub.add_argument("--program", required=True, help="Claimed program or degree")
    sub.add_argument("--start-year", type=int, required=True, help="Enrollment start year")
    sub.add_argument("--end-year", type=int, required=True, help="Enrollment end year")
    sub.add_argument("--document", required=True, help="Path to PDF/PNG/JPEG document")
    sub.add_argument("--institution-id", help="Optional institution identifier")
    sub.set_defaults(func=cmd_submit)

    st = subparsers.add_parser("status", help="Show one request with its attempts")
    st.add_argument("--user", required=True, help="Authenticated user id")
    st.add_argument("request_id")
    st.set_defaults(func=cmd_status)

    lst = subparsers.add_parser("list", help="List a user's requests, newest first")
    lst.add_argument("--user", required=True, help="Authenticated user id")
    lst.set_defaults(func=cmd_list)

    app = subparsers.add_parser("appeal", help="Appeal a REJECTED request")
    app.add_argument("--user", required=True, help="Authenticated user id")
    app.add_argument("--reason", required=True, help="Why the rejection is wrong")
    app.add_argument("--document", help="Optional supplementary document")
    app.add_argument("request_id")
    app.set_defaults(func=cmd_appeal)

    rev = subparsers.add_parser("review", help="Record a manual review decision")
    rev.add_argument("--decision", required=True, choices=["APPROVED", "REJECTED"])
    rev.add_argument("--notes", help="Reviewer notes")
    rev.add_argument("--reviewer", help="Reviewer id")
    rev.add_argument("request_id")
    rev.set_defaults(func=cmd_review)

    que = subparsers.add_parser("queue", help="List requests awaiting manual review")
    que.set_defaults(func=cmd_queue)

    cred = subparsers.add_parser("credentials", help="Show a user's active credentials")
    cred.add_argument("--user", required=True, help="User id")
    cred.add_argument("--institution", help="Only check this institution")
    cred.set_defaults(func=cmd_credentials)

    sw = subparsers.add_parser("sweep", help="Expire credentials and time out stuck attempts")
    sw.add_argument("--loop", action="store_true", help="Repeat every CREDVERIFY_SWEEP_INTERVAL seconds")
    sw.set_defaults(func=cmd_sweep)

    ext = subparsers.add_parser("extract", help="Run field extraction on a text file and print JSON")
    ext.add_argument("--input", required=True, help="Path to OCR text")
    ext.set_defaults(func=cmd_extract)

    rep = subparsers.add_parser("replay", help="Recompute an attempt and compare with the stored result")
    rep.add_argument("attempt_id")
    rep.set_defaults(func=cmd_replay)

    chk = subparsers.add_parser("check", help="Report persisted-state violations")
    chk.set_defaults(func=cmd_check)
    return parser


def main(argv=None):
    load_env()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if not hasattr(args, "func"):
        parser.print_help()
        return

    try:
        settings = Settings.from_env()
    except ValueError as e:
        raise SystemExit(f"Configuration error: {e}")
    logger = get_logger(level=settings.log_level, log_dir=settings.log_dir)

    try:
        args.func(args, settings)
    except VerificationError as e:
        print(f"[{e.code}] {e.message}", file=sys.stderr)
        raise SystemExit(2)
    finally:
        if args.command in ("submit", "appeal", "sweep"):
            logger.log_metrics_summary()


if __name__ == "__main__":
    main()
