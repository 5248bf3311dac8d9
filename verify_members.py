#!/usr/bin/env python3

import argparse
import sys

from Provisioner import Provisioner
from config import Config
from errors import InputError, NamespaceLookupError
from utils import parse_roster, read_token_file


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Checks a roster against gitlab without creating "
                    "anything: reports students without a gitlab account "
                    "and the project each roster line would get.")
    parser.add_argument('designation', type=str,
                        help='assignment designation, e.g. a1')
    parser.add_argument('group', type=str,
                        help='gitlab group, e.g. ece459-1231')
    parser.add_argument('roster', type=str,
                        help='roster file')
    parser.add_argument('token_file', type=str,
                        help='file containing a gitlab access token')
    parser.add_argument('-s', '--settings', type=str, default=None,
                        help='JSON settings file')
    args = parser.parse_args()

    try:
        token = read_token_file(args.token_file)
        # no template is imported, so none is needed
        conf = Config(args.designation, args.group, "", token, args.settings)
        roster = parse_roster(args.roster)
    except InputError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    gl = Provisioner.connect(conf)
    try:
        Provisioner.find_current_user(gl)
        Provisioner.find_group(gl, conf.group_name)
    except NamespaceLookupError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    non_gitlab = []
    for row, team in enumerate(roster, start=1):
        identities = Provisioner.convert_to_user_ids(gl, team)
        missing = [i.student for i in identities if not i.resolved]
        non_gitlab.extend(missing)
        if not team:
            print(f"line {row}: empty, skipped")
        elif len(missing) == len(team):
            print(f"line {row}: {conf.project_name(row, team)} would be "
                  f"skipped; no gitlab users found")
        else:
            print(f"line {row}: {conf.project_name(row, team)}")

    print("Not in gitlab:")
    print(non_gitlab)


if __name__ == "__main__":
    main()
