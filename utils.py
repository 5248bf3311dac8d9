import re
from typing import List, Optional, Sequence, Tuple

from gitlab.exceptions import GitlabError

from errors import InputError

# a team is the ordered tuple of identities on one roster line
Team = Tuple[str, ...]


def parse_roster(filename: str, delimiter: str = ",") -> List[Team]:
    """Reads a headerless roster file into a list of teams.

    Each line is one team.  Fields are trimmed and empty fields dropped; a
    line with no identities still yields an empty team so that group numbers
    of later lines keep matching their line number.

    :param filename: Path to the roster file
    :param delimiter: Field separator
    :return: One tuple of identities per line, in file order
    """
    teams: List[Team] = []
    try:
        with open(filename, 'r') as fin:
            for line in fin:
                fields = (field.strip() for field in line.split(delimiter))
                teams.append(tuple(f for f in fields if f))
    except (OSError, UnicodeDecodeError) as e:
        raise InputError(f"Unable to read roster {filename}: {e}") from e
    return teams


def read_token_file(filename: str) -> str:
    """Reads an access token, dropping all whitespace around (and within) it.

    :param filename: Path to the token file
    :return: The token
    """
    try:
        with open(filename, 'r') as fin:
            token = "".join(fin.read().split())
    except (OSError, UnicodeDecodeError) as e:
        raise InputError(f"Unable to read token from file {filename}: {e}") \
            from e
    if not token:
        raise InputError(f"Token file {filename} is empty")
    return token


def project_name(group_name: str, designation: str, row: int,
                 team: Sequence[str]) -> str:
    """Names the project for the team on (1-based) roster line `row`.

    Individuals are named after themselves, groups (and empty lines) after
    their line number.
    """
    if len(team) == 1:
        return f"{group_name}-{designation}-{team[0]}"
    return f"{group_name}-{designation}-g{row}"


def import_url(hostname: str, username: str, token: str,
               template_repo: str) -> str:
    return f"https://{username}:{token}@{hostname}/{template_repo}.git"


def redact(text: str, token: str) -> str:
    # error messages from the import call may echo the credential
    if not token:
        return text
    return re.sub(re.escape(token), "********", text)


def benign_error(err: GitlabError, ok_codes: Sequence[int] = ()) -> bool:
    """Whether a client error actually reports a usable outcome.

    Some calls surface a 2xx status, or a status meaning "already in the
    desired state" (listed in `ok_codes`), as an exception.

    :param err: The exception raised by python-gitlab
    :param ok_codes: Additional status codes that count as success
    :return: True if the call should be treated as successful
    """
    code: Optional[int] = err.response_code
    if code is None:
        return False
    # a project that is still being set up (or is gone) also answers 404
    if code == 404 and "project not found" in str(err.error_message).lower():
        return False
    return 200 <= code < 300 or code in ok_codes
