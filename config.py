import json
import re
from typing import Any, Dict, Optional, Sequence

from errors import InputError
from utils import import_url, project_name


class Config(object):
    """
    A data-only class storing the settings of one provisioning run

    The four run inputs (designation, group, template repository and access
    token) come from the command line.  Platform settings have defaults and
    may be overridden by an optional JSON settings file in the following
    format
    ```json
    {
     "hostname" : "git.uwaterloo.ca",
     "default_branch" : "main",
     "settle_delay" : 10,
     "ready_timeout" : 60,
     "skip_existing" : false
    }
    ```

    Attributes:
        designation (str): Short assignment designation used in project names, e.g. `a1`.
        group_name (str): Path of the GitLab group the projects are created in, e.g. `ece459-1231`.
        template_repo (str): Path of the template project whose history is imported, e.g. `ece459/ece459-a1`.
        token (str): GitLab personal access token.
        hostname (str): GitLab host.
        default_branch (str): Default branch of created projects; the protected branch.
        settle_delay (float): Seconds to wait after creating a project before touching its branches.
        ready_timeout (float): Seconds to keep polling for the default branch after the settle delay. 0 disables polling.
        skip_existing (bool): Skip roster entries whose project already exists in the group.
    """

    defaults: Dict[str, Any] = {
        "hostname": "git.uwaterloo.ca",
        "default_branch": "main",
        "settle_delay": 10,
        "ready_timeout": 60,
        "skip_existing": False,
    }
    "Settings used when no settings file overrides them."

    def __init__(self, designation: str, group_name: str, template_repo: str,
                 token: str, settings_file: Optional[str] = None,
                 verbosity: bool = False):

        settings = dict(Config.defaults)
        if settings_file is not None:
            settings.update(Config.read_settings(settings_file))

        self.verbose: bool = verbosity
        "Flag to enable verbose output"

        self.designation: str = designation
        "Short assignment designation used in project names."

        self.group_name: str = group_name
        "Path of the GitLab group the projects are created in."

        # tolerate "ece459/ece459-a1.git" as well as "ece459/ece459-a1"
        self.template_repo: str = re.sub(r"\.git$", "",
                                         template_repo.strip("/"))
        "Path of the template project whose history is imported."

        self.token: str = token
        "GitLab personal access token."

        self.hostname: str = str(settings["hostname"])
        "GitLab host."

        self.default_branch: str = str(settings["default_branch"])
        "Default branch of created projects; the protected branch."

        self.settle_delay: float = float(settings["settle_delay"])
        """Seconds to wait after creating a project before touching its
        branches.  GitLab sets up imported projects in the background and
        answers 404 to branch calls until it is done."""

        self.ready_timeout: float = float(settings["ready_timeout"])
        "Seconds to keep polling for the default branch after the delay."

        self.skip_existing: bool = bool(settings["skip_existing"])
        "Skip roster entries whose project already exists in the group."

        if self.settle_delay < 0 or self.ready_timeout < 0:
            raise InputError("settle_delay and ready_timeout must not be "
                             "negative")

    @staticmethod
    def read_settings(settings_file: str) -> Dict[str, Any]:
        """Reads a JSON settings file

        :param settings_file: Path to the settings file
        :return: The settings, restricted to known keys
        """
        try:
            with open(settings_file, 'r') as f:
                settings = json.loads(f.read())
        except (OSError, ValueError) as e:
            raise InputError(f"Unable to read settings file "
                             f"{settings_file}: {e}") from e

        if not isinstance(settings, dict):
            raise InputError(f"Settings file {settings_file} must contain "
                             f"a JSON object")
        unknown = sorted(set(settings) - set(Config.defaults))
        if unknown:
            raise InputError(f"Unknown settings in {settings_file}: "
                             f"{', '.join(unknown)}")
        for key in ("settle_delay", "ready_timeout"):
            value = settings.get(key, 0)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InputError(f"{key} in {settings_file} must be a number "
                                 f"of seconds")
        return settings

    @property
    def api_url(self) -> str:
        return f"https://{self.hostname}"

    def import_url(self, username: str) -> str:
        """Returns the authenticated URL GitLab imports the template from

        :param username: Name of the user that owns the token
        :return: `https://<user>:<token>@<host>/<template>.git`
        """
        return import_url(self.hostname, username, self.token,
                          self.template_repo)

    def project_name(self, row: int, team: Sequence[str]) -> str:
        """Returns the project name for a team

        :param row: 1-based roster line of the team
        :param team: Identities on that line
        :return: The project name
        """
        return project_name(self.group_name, self.designation, row, team)

    def pretty_print(self) -> None:
        """Prints out a human-readable representation of the configuration"""
        print(f"designation: {self.designation}")
        print(f"group: {self.group_name}")
        print(f"template repository: {self.template_repo}")
        print(f"host: {self.hostname}")
        print(f"default branch: {self.default_branch}")
        print(f"settle delay: {self.settle_delay:g}s")
        print(f"ready timeout: {self.ready_timeout:g}s")
        print(f"skip existing projects: {self.skip_existing}")
