"""``doc2x parse``: upload PDFs, wait for parsing, optionally convert and download."""

import argparse
import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from doc2x.cli.failure_log import record_failure
from doc2x.cli.helpers import (
    build_client,
    download_to_file,
    parse_convert_format,
    parse_duration,
    parse_formula_mode,
    resolve_api_key,
)
from doc2x.clients.doc2x_client import Doc2XClient
from doc2x.core.config import CLI_CONCURRENCY, CLI_POLL_INTERVAL_SECONDS
from doc2x.core.exceptions import BatchFailedError, ValidationError
from doc2x.models.dto import ConvertFormat, ConvertRequest, FormulaMode
from doc2x.resilience.cancellation import CancelToken
from doc2x.utils.io_utils import change_ext, default_download_name, write_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AutoConvert:
    """Conversion and download triggered after a successful parse."""

    enabled: bool
    to: ConvertFormat
    formula_mode: FormulaMode
    download_dir: str = "."
    filename: str = ""
    merge_cross_page_forms: bool = False
    output: str = ""


@dataclass(frozen=True)
class ParseJob:
    wait: bool
    interval: float
    output: str
    output_dir: str
    fail_log: Optional[str]
    auto: AutoConvert


def add_parser(subparsers) -> None:
    parser = subparsers.add_parser(
        "parse", help="Upload and parse a PDF (single file or directory)"
    )
    parser.add_argument("--file", "-f", default="", help="PDF file path to upload")
    parser.add_argument(
        "--path", "-p", default="", help="Path to a PDF file or a directory containing PDFs"
    )
    parser.add_argument(
        "--wait",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Wait for parsing to finish",
    )
    parser.add_argument(
        "--interval",
        type=parse_duration,
        default=CLI_POLL_INTERVAL_SECONDS,
        help="Polling interval for parsing status (e.g. 3s, 500ms)",
    )
    parser.add_argument(
        "--output", "-o", default="", help="Optional path to save parsed result JSON"
    )
    parser.add_argument(
        "--output-dir",
        default="",
        help="Directory to store JSON results when parsing multiple files",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=CLI_CONCURRENCY,
        help="Number of concurrent uploads when using --path",
    )
    parser.add_argument(
        "--convert",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="After parse success, trigger conversion and download",
    )
    parser.add_argument(
        "--convert-to",
        default=str(ConvertFormat.MARKDOWN),
        help="Target format for auto conversion: md|tex|docx|md_dollar",
    )
    parser.add_argument(
        "--convert-formula-mode",
        default=str(FormulaMode.NORMAL),
        help="Formula mode for auto conversion: normal|dollar|latex",
    )
    parser.add_argument(
        "--download-dir",
        default=".",
        help="Directory to store auto-downloaded converted files",
    )
    parser.add_argument(
        "--convert-filename",
        default="",
        help="Optional output filename (md/tex) without extension during auto conversion",
    )
    parser.add_argument(
        "--convert-merge-cross-page-forms",
        action="store_true",
        help="Merge cross page tables during auto conversion",
    )
    parser.add_argument(
        "--convert-output",
        default="",
        help="Override download path for auto conversion (defaults to UID-based name under download-dir)",
    )
    parser.set_defaults(handler=run_parse)


def collect_input_files(path: str) -> list[str]:
    """Resolve a file or directory argument into the PDFs to upload.

    Directories are not searched recursively.
    """
    p = Path(path)
    if not p.exists():
        raise ValidationError(f"path does not exist: {path}", field="path")

    if p.is_file():
        if p.suffix.lower() == ".pdf":
            return [str(p)]
        raise ValidationError(f"file is not a pdf: {path}", field="path")

    if not p.is_dir():
        raise ValidationError(f"path is neither file nor directory: {path}", field="path")

    return sorted(
        str(entry)
        for entry in p.iterdir()
        if entry.is_file() and entry.suffix.lower() == ".pdf"
    )


async def handle_parse_file(
    client: Doc2XClient, pdf: str, job: ParseJob, token: CancelToken
) -> None:
    """Preupload, upload, wait and save the result of one PDF."""
    label = os.path.basename(pdf)
    trace_id = None

    try:
        pre = await client.preupload(token)
        trace_id = pre.trace_id
        uid = pre.data.uid
        logger.info(
            "Preupload completed",
            extra={"file": label, "uid": uid, "trace_id": trace_id},
        )

        with open(pdf, "rb") as f:
            await client.upload_to_presigned_url_from(pre.data.url, f, token)
        logger.info("Upload success", extra={"file": label, "trace_id": trace_id})

        if not job.wait:
            logger.info(
                "Submitted parse job",
                extra={"file": label, "uid": uid, "trace_id": trace_id},
            )
            return

        status = await client.wait_for_parsing(uid, job.interval, token)
        trace_id = status.trace_id or trace_id
        logger.info(
            "Parse success",
            extra={
                "file": label,
                "uid": uid,
                "pages": status.page_count,
                "trace_id": trace_id,
            },
        )

        target = job.output
        if job.output_dir:
            target = os.path.join(job.output_dir, change_ext(label, ".json"))

        if target and status.data is not None and status.data.result is not None:
            write_json(target, status.data.result.model_dump())
            logger.info(
                "Saved parse result",
                extra={"file": label, "path": target, "trace_id": trace_id},
            )
    except Exception as e:
        record_failure(job.fail_log, pdf, e, trace_id)
        raise

    if job.auto.enabled:
        await auto_convert_and_download(client, uid, job, label, token)


async def auto_convert_and_download(
    client: Doc2XClient, uid: str, job: ParseJob, label: str, token: CancelToken
) -> None:
    cfg = job.auto
    trace_id = None

    try:
        resp = await client.convert_parse(
            ConvertRequest(
                uid=uid,
                to=cfg.to,
                formula_mode=cfg.formula_mode,
                filename=cfg.filename,
                merge_cross_page_forms=cfg.merge_cross_page_forms,
            ),
            token,
        )
        trace_id = resp.trace_id

        result = await client.wait_for_conversion(uid, job.interval, token)
        trace_id = result.trace_id or trace_id
        url = result.data.url
        logger.info(
            "Conversion finished",
            extra={
                "file": label,
                "uid": uid,
                "status": result.data.status,
                "url": url,
                "trace_id": trace_id,
            },
        )

        out_path = cfg.output or os.path.join(
            cfg.download_dir or ".", default_download_name(url, uid)
        )
        await download_to_file(client, url, out_path, token)
        logger.info(
            "Downloaded converted file",
            extra={"file": label, "path": out_path, "trace_id": trace_id},
        )
    except Exception as e:
        record_failure(job.fail_log, uid, e, trace_id)
        raise


async def run_parse_batch(
    client: Doc2XClient,
    files: list[str],
    concurrency: int,
    job: ParseJob,
    token: CancelToken,
) -> None:
    """Parse files with at most ``concurrency`` in flight; report all failures at the end."""
    semaphore = asyncio.Semaphore(max(1, concurrency))
    errors: list[BaseException] = []

    async def worker(pdf: str) -> None:
        async with semaphore:
            try:
                await handle_parse_file(client, pdf, job, token)
            except Exception as e:
                errors.append(e)

    await asyncio.gather(*(worker(pdf) for pdf in files))

    if errors:
        raise BatchFailedError(len(files), errors) from errors[0]


def build_job(args: argparse.Namespace) -> ParseJob:
    return ParseJob(
        wait=args.wait,
        interval=args.interval if args.interval > 0 else CLI_POLL_INTERVAL_SECONDS,
        output=args.output,
        output_dir=args.output_dir,
        fail_log=args.fail_log,
        auto=AutoConvert(
            enabled=args.convert,
            to=parse_convert_format(args.convert_to),
            formula_mode=parse_formula_mode(args.convert_formula_mode),
            download_dir=args.download_dir,
            filename=args.convert_filename,
            merge_cross_page_forms=args.convert_merge_cross_page_forms,
            output=args.convert_output,
        ),
    )


async def run_parse(args: argparse.Namespace, token: CancelToken) -> None:
    target = args.path or args.file

    try:
        if not target:
            raise ValidationError("flag --file or --path is required", field="file")
        files = collect_input_files(target)
        if not files:
            raise ValidationError(f"no pdf files found in {target}", field="path")
        job = build_job(args)
        api_key = resolve_api_key(args.api_key)
    except ValidationError as e:
        record_failure(args.fail_log, target, e)
        raise

    concurrency = args.concurrency if args.concurrency > 0 else CLI_CONCURRENCY

    async with build_client(args, api_key) as client:
        if len(files) == 1:
            await handle_parse_file(client, files[0], job, token)
        else:
            await run_parse_batch(client, files, concurrency, job, token)
