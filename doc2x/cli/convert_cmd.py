"""``doc2x convert``: convert a parsed document and optionally download it."""

import argparse
import logging

from doc2x.cli.failure_log import record_failure
from doc2x.cli.helpers import (
    build_client,
    download_to_file,
    parse_convert_format,
    parse_duration,
    parse_formula_mode,
    resolve_api_key,
)
from doc2x.core.config import CLI_POLL_INTERVAL_SECONDS
from doc2x.core.exceptions import ValidationError
from doc2x.models.dto import ConvertFormat, ConvertRequest, FormulaMode
from doc2x.resilience.cancellation import CancelToken
from doc2x.utils.io_utils import default_download_name

logger = logging.getLogger(__name__)


def add_parser(subparsers) -> None:
    parser = subparsers.add_parser(
        "convert", help="Trigger conversion for a parsed document"
    )
    parser.add_argument("--uid", default="", help="UID of the parsed document")
    parser.add_argument(
        "--to",
        default=str(ConvertFormat.MARKDOWN),
        help="Target format: md|tex|docx|md_dollar",
    )
    parser.add_argument(
        "--formula-mode",
        default=str(FormulaMode.NORMAL),
        help="Formula mode: normal|dollar|latex",
    )
    parser.add_argument(
        "--filename", default="", help="Optional output filename for md/tex without extension"
    )
    parser.add_argument(
        "--merge-cross-page-forms", action="store_true", help="Merge cross page tables"
    )
    parser.add_argument(
        "--wait",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Wait for conversion to finish",
    )
    parser.add_argument(
        "--interval",
        type=parse_duration,
        default=CLI_POLL_INTERVAL_SECONDS,
        help="Polling interval for conversion status (e.g. 3s, 500ms)",
    )
    parser.add_argument(
        "--download",
        action="store_true",
        help="Download the converted file when ready",
    )
    parser.add_argument(
        "--output", "-o", default="", help="Download path (used when --download is set)"
    )
    parser.set_defaults(handler=run_convert)


async def run_convert(args: argparse.Namespace, token: CancelToken) -> None:
    try:
        to = parse_convert_format(args.to)
        formula_mode = parse_formula_mode(args.formula_mode)
    except ValidationError as e:
        record_failure(args.fail_log, args.uid, e)
        raise

    if not args.uid:
        raise ValidationError("flag --uid is required", field="uid")

    interval = args.interval if args.interval > 0 else CLI_POLL_INTERVAL_SECONDS

    try:
        api_key = resolve_api_key(args.api_key)
    except ValidationError as e:
        record_failure(args.fail_log, args.uid, e)
        raise

    trace_id = None
    async with build_client(args, api_key) as client:
        try:
            resp = await client.convert_parse(
                ConvertRequest(
                    uid=args.uid,
                    to=to,
                    formula_mode=formula_mode,
                    filename=args.filename,
                    merge_cross_page_forms=args.merge_cross_page_forms,
                ),
                token,
            )
            trace_id = resp.trace_id
            logger.info(
                "Convert requested",
                extra={
                    "uid": args.uid,
                    "status": resp.data.status if resp.data else "",
                    "trace_id": trace_id,
                },
            )

            if not args.wait:
                return

            result = await client.wait_for_conversion(args.uid, interval, token)
            trace_id = result.trace_id or trace_id
            url = result.data.url
            logger.info(
                "Conversion finished",
                extra={
                    "uid": args.uid,
                    "status": result.data.status,
                    "url": url,
                    "trace_id": trace_id,
                },
            )

            if args.download:
                out_path = args.output or default_download_name(url, args.uid)
                await download_to_file(client, url, out_path, token)
                logger.info(
                    "Downloaded converted file",
                    extra={"path": out_path, "trace_id": trace_id},
                )
        except Exception as e:
            record_failure(args.fail_log, args.uid, e, trace_id)
            raise
