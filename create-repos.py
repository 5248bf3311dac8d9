#!/usr/bin/env python
import sys

from Provisioner import Provisioner
from config import Config
from errors import InputError, NamespaceLookupError
from utils import parse_roster, read_token_file


def main() -> None:
    # wrong argument count exits here, before anything is read or created
    args = Provisioner.default_parser.parse_args()

    try:
        token = read_token_file(args.token_file)
        conf = Config(args.designation, args.group, args.template, token,
                      args.settings, args.verbose)
        roster = parse_roster(args.roster)
    except InputError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    if conf.verbose:
        conf.pretty_print()
        print(f"{len(roster)} roster line(s) read from {args.roster}")

    # connect to gitlab
    gl = Provisioner.connect(conf)

    try:
        results = Provisioner.create_repos(gl, conf, roster)
    except NamespaceLookupError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    Provisioner.print_summary(results)


if __name__ == "__main__":
    main()
