#!/usr/bin/env python
import json
import sys
import logging

from threading import Event, Timer
from argparse import ArgumentParser, Namespace

from ova_inventory.inventory import ScanRequest
from ova_inventory.ova_extractor import OvaExtractor


def main(argv=None) -> int:
    args = parse_args(argv)

    logging.basicConfig(stream=sys.stderr, level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(message)s')

    extractor = OvaExtractor(buffer_whole_file=not args.stream)

    cancel_event = Event()
    timer = None
    if args.timeout is not None:
        timer = Timer(args.timeout, cancel_event.set)
        timer.daemon = True
        timer.start()

    try:
        failures = sum(not scan_file(extractor, path, cancel_event) for path in args.input_files)
    finally:
        if timer is not None:
            timer.cancel()

    return 1 if failures else 0


def parse_args(argv=None) -> Namespace:
    args = ArgumentParser(
        description='List the disk images packed inside OVA virtual appliance archives')

    args.add_argument(
        'input_files', nargs='+', help='Paths to the .ova files to inventory')
    args.add_argument(
        '-v', '--verbose', action='store_true', help='Log skipped archive entries')
    args.add_argument(
        '--stream', action='store_true',
        help='Walk archives straight from disk instead of loading them into memory first')
    args.add_argument(
        '--timeout', type=float, default=None,
        help='Cancel the remaining scans after this many seconds')

    return args.parse_args(argv)


def scan_file(extractor: OvaExtractor, path: str, cancel_event: Event) -> bool:
    if not extractor.check_file_required(path):
        logging.info(f"Skipping \"{path}\" which is not an OVA file")
        return True

    try:
        with open(path, 'rb') as input_file:
            result = extractor.scan(ScanRequest(path, input_file), cancel_event)

    except OSError as e:
        logging.error(f"Failed to open \"{path}\": {e}")
        return False

    if not result.success:
        logging.error(f"Failed to inventory \"{path}\": {result.error}")
        return False

    for record in result.records:
        print(json.dumps(record.to_dict()))

    return True


if __name__ == '__main__':
    sys.exit(main())
