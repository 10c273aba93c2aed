#!/usr/bin/env python3
import sys
import argparse

from geoload.errors import ConfigError, ValidationFailure
from geoload.orchestrator import run_show, run_upload
from geoload.utils import get_logger

logger = get_logger("geoload.cli")


def build_parser():
    parser = argparse.ArgumentParser(description="Load GeoJSON features into a feature store space")
    parser.add_argument("--config", help="Path to YAML config")
    parser.add_argument("--base-url", dest="base_url", help="Feature store root URL")
    sub = parser.add_subparsers(dest="command", required=True)

    up = sub.add_parser("upload", help="upload GeoJSON / GeoJSONL from a file or stdin into a space")
    up.add_argument("space", help="target space id")
    up.add_argument("-f", "--file", help="GeoJSON or GeoJSONL file to upload; stdin when omitted")
    up.add_argument("--from-space", dest="from_space", help="copy the features of another space instead of a file")
    up.add_argument("-c", "--chunk", type=int, help="chunk size, default 200; use 1-10 for very large geometries")
    up.add_argument("-t", "--tags", help="comma separated tags added to every feature")
    up.add_argument("-p", "--ptag", dest="tag_properties", help="property names whose values become key@value tags")
    up.add_argument("-i", "--id", dest="id_fields", help="property name(s) used as the feature id, comma separated")
    up.add_argument("-o", "--override", dest="override", action="store_true", help="replace feature ids with a content hash and drop duplicates")
    up.add_argument("-s", "--stream", dest="stream", action="store_true", help="stream large files using concurrent writes; tune with -c")
    up.add_argument("-e", "--errors", dest="errors", action="store_true", help="print rejected features and reasons")
    up.add_argument("--date", dest="date_properties", help="date property name(s) to normalize into xyz_timestamp_/xyz_iso8601_ properties")
    up.add_argument("--datetags", dest="date_tags", help="date parts to add as tags: year,month,week,weekday,year_month,year_week,hour")
    up.add_argument("--dateprops", dest="date_props", help="date parts to add as properties: year,month,week,weekday,year_month,year_week,hour")
    up.add_argument("--token", help="external token to upload into another account's space")
    up.add_argument("--workers", type=int, help="concurrent uploads in stream mode (default 10)")
    up.add_argument("--retries", type=int, help="retries on 5xx responses (default 3)")
    up.set_defaults(override=None, stream=None, errors=None)

    show = sub.add_parser("show", help="print the features of a space")
    show.add_argument("space", help="space id")
    show.add_argument("-l", "--limit", type=int, help="number of features to fetch (default 5000)")
    show.add_argument("--handle", help="handle to continue the iteration")
    show.add_argument("-t", "--tags", help="tags to filter on")
    show.add_argument("-r", "--raw", action="store_true", help="one feature per line (GeoJSONL)")
    show.add_argument("--token", help="external token to read another account's space")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "upload":
            overrides = {
                "base_url": args.base_url,
                "file": args.file,
                "from_space": args.from_space,
                "chunk": args.chunk,
                "tags": args.tags,
                "tag_properties": args.tag_properties,
                "id_fields": args.id_fields,
                "override": args.override,
                "stream": args.stream,
                "errors": args.errors,
                "date_properties": args.date_properties,
                "date_tags": args.date_tags,
                "date_props": args.date_props,
                "token": args.token,
                "workers": args.workers,
                "retries": args.retries,
            }
            result = run_upload(args.space, config_path=args.config, overrides=overrides)
            logger.info("upload result success=%d failed=%d", result.success_count, result.failed_count)
            return 0
        overrides = {
            "base_url": args.base_url,
            "limit": args.limit,
            "handle": args.handle,
            "tags": args.tags,
            "raw": args.raw,
            "token": args.token,
        }
        run_show(args.space, config_path=args.config, overrides=overrides)
        return 0
    except (ConfigError, ValidationFailure) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
