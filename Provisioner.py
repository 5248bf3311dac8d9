import sys
import time
from typing import Any, Callable, List, Optional, Sequence, Type

import argparse
import gitlab
from gitlab.const import AccessLevel
from gitlab.exceptions import GitlabError
from gitlab.v4.objects import Group
from requests.exceptions import RequestException

from config import Config
from errors import (MembershipError, NamespaceLookupError, PolicyError,
                    ProvisionError, ProvisioningError, ResolutionMiss)
from results import EntryResult, EntryState, ResolvedIdentity, StepResult
from utils import Team, benign_error, redact

DEVELOPER_ACCESS = AccessLevel.DEVELOPER.value
ADMIN_ACCESS = AccessLevel.ADMIN.value

# backoff bounds (seconds) while polling for the default branch
POLL_INITIAL = 1.0
POLL_MAX = 16.0


class Provisioner(object):
    """Creates one GitLab project per roster line

    Each project is imported from a template repository, gets its default
    branch protected and its students added as developers.  Roster lines are
    processed strictly in order; a line that fails is reported and skipped,
    never retried.
    """

    default_parser = argparse.ArgumentParser()
    """The default parser with the arguments of a provisioning run

    ```python
    args = Provisioner.default_parser.parse_args()
    ```
    """
    default_parser.add_argument('designation', type=str,
                                help='assignment designation, e.g. a1')
    default_parser.add_argument('group', type=str,
                                help='gitlab group to create projects in, '
                                     'e.g. ece459-1231')
    default_parser.add_argument('template', type=str,
                                help='template repository path, '
                                     'e.g. ece459/ece459-a1')
    default_parser.add_argument('roster', type=str,
                                help='file with one student or comma '
                                     'separated group per line')
    default_parser.add_argument('token_file', type=str,
                                help='file containing a gitlab access token')
    default_parser.add_argument('-s', '--settings', type=str, default=None,
                                help='JSON file overriding host, default '
                                     'branch and timing settings')
    default_parser.add_argument('-v', '--verbose',
                                action='store_true',
                                help='enable verbose output')

    @staticmethod
    def connect(config: Config) -> gitlab.Gitlab:
        return gitlab.Gitlab(config.api_url, private_token=config.token)

    @staticmethod
    def find_current_user(gl: gitlab.Gitlab) -> str:
        """Finds the username the access token belongs to

        The username is embedded in the template import URL, so it has to
        come from GitLab rather than from the command line.

        :param gl: An authenticated gitlab.Gitlab client
        :return: The current username
        """
        print("Finding current user...")
        try:
            gl.auth()
        except (GitlabError, RequestException) as e:
            raise NamespaceLookupError(
                f"Unable to determine the current user: {e}") from e
        username = getattr(gl.user, "username", None)
        if not isinstance(username, str) or not username:
            raise NamespaceLookupError("GitLab did not report a username for "
                                       "the current user")
        print(f"Current user is {username}")
        return username

    @staticmethod
    def find_group(gl: gitlab.Gitlab, group_name: str) -> Group:
        """Looks up the group new projects are created in

        :param gl: An authenticated gitlab.Gitlab client
        :param group_name: Full path of the group
        :return: The group; its `id` is the namespace id of new projects
        """
        print(f"Finding group ID for group {group_name}...")
        try:
            group = gl.groups.get(group_name)
        except (GitlabError, RequestException) as e:
            raise NamespaceLookupError(
                f"Unable to find group {group_name}: {e}") from e
        if not isinstance(getattr(group, "id", None), int):
            raise NamespaceLookupError(f"GitLab did not report an id for "
                                       f"group {group_name}")
        return group

    @staticmethod
    def retrieve_user_id(gl: gitlab.Gitlab, student: str) -> Optional[int]:
        """Returns the GitLab user id of the user named exactly `student`

        :param gl: An authenticated gitlab.Gitlab client
        :param student: GitLab username of the student
        :return: The user id, or None if there is no such user
        """
        try:
            users = gl.users.list(username=student)
        except (GitlabError, RequestException) as e:
            print(f"Lookup of student {student} failed: {e}", file=sys.stderr)
            return None
        if not users:
            return None
        return users[0].id

    @staticmethod
    def convert_to_user_ids(gl: gitlab.Gitlab,
                            team: Sequence[str]) -> List[ResolvedIdentity]:
        identities = []
        for student in team:
            print(f"Looking up student {student}...")
            user_id = Provisioner.retrieve_user_id(gl, student)
            if user_id is not None:
                print(f"Student {student} has a user ID of {user_id}.")
            else:
                print(f"No gitlab user found for student {student}.")
            identities.append(ResolvedIdentity(student, user_id))
        return identities

    @staticmethod
    def find_existing_project(group: Group, name: str) -> Optional[int]:
        """Returns the id of the project called `name` in `group`, if any

        :param group: The destination group
        :param name: The project name
        :return: The project id, or None
        """
        try:
            for project in group.projects.list(search=name, iterator=True):
                if project.name == name:
                    return project.id
        except (GitlabError, RequestException) as e:
            print(f"Unable to list projects of group {group.full_path}: {e}",
                  file=sys.stderr)
        return None

    @staticmethod
    def create_project(gl: gitlab.Gitlab, config: Config, import_url: str,
                       name: str, namespace_id: int) -> int:
        """Creates a private project whose history is imported from the
        template repository

        :param gl: An authenticated gitlab.Gitlab client
        :param config: The Config object for the run
        :param import_url: Authenticated URL of the template repository
        :param name: Name of the new project
        :param namespace_id: Id of the destination group
        :return: The id of the new project
        """
        print(f"Creating project {name}...")
        try:
            project = gl.projects.create({
                "name": name,
                "namespace_id": namespace_id,
                "visibility": "private",
                "default_branch": config.default_branch,
                "import_url": import_url,
            })
        except (GitlabError, RequestException) as e:
            # the import URL carries the token; keep it out of the message
            raise ProvisionError(f"Failed to create project {name}: "
                                 f"{redact(str(e), config.token)}") from None
        return project.id

    @staticmethod
    def wait_until_ready(gl: gitlab.Gitlab, config: Config,
                         project_id: int) -> None:
        """Waits until GitLab has finished setting up a new project

        Always sleeps for `config.settle_delay`, then polls for the default
        branch with exponential backoff for at most `config.ready_timeout`
        seconds.

        :param gl: An authenticated gitlab.Gitlab client
        :param config: The Config object for the run
        :param project_id: Id of the new project
        """
        if config.verbose:
            print(f"Waiting {config.settle_delay:g}s for GitLab to set up "
                  f"project {project_id}...")
        time.sleep(config.settle_delay)
        if config.ready_timeout <= 0:
            return

        project = gl.projects.get(project_id, lazy=True)
        deadline = time.monotonic() + config.ready_timeout
        backoff = POLL_INITIAL
        while True:
            try:
                project.branches.get(config.default_branch)
                return
            except (GitlabError, RequestException) as e:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise PolicyError(
                        f"Branch {config.default_branch} of project "
                        f"{project_id} did not appear within "
                        f"{config.ready_timeout:g}s: {e}") from e
            if config.verbose:
                print(f"Branch {config.default_branch} not there yet; "
                      f"retrying in {min(backoff, remaining):g}s")
            time.sleep(min(backoff, remaining))
            backoff = min(backoff * 2, POLL_MAX)

    @staticmethod
    def attempt(step: str, call: Callable[[], Any],
                error_type: Type[ProvisioningError],
                ok_codes: Sequence[int] = ()) -> StepResult:
        """Runs one best-effort GitLab call and records its outcome

        :param step: Human-readable name of the call
        :param call: The call itself
        :param error_type: Exception type recorded on failure
        :param ok_codes: Error status codes that mean the desired state
            already holds
        :return: The outcome; failures are printed, never raised
        """
        try:
            call()
        except (GitlabError, RequestException) as e:
            if isinstance(e, GitlabError) and benign_error(e, ok_codes):
                return StepResult(step, True)
            err = error_type(f"{step} failed: {e}")
            print(err, file=sys.stderr)
            return StepResult(step, False, err)
        return StepResult(step, True)

    @staticmethod
    def configure_branch_protection(gl: gitlab.Gitlab, config: Config,
                                    name: str,
                                    project_id: int) -> List[StepResult]:
        """(Re)applies the protection policy to the default branch

        GitLab only offers protect and unprotect, so the branch is first
        unprotected and then protected again: no force pushes, developers
        may push and merge, only admins may unprotect.

        :param gl: An authenticated gitlab.Gitlab client
        :param config: The Config object for the run
        :param name: Name of the project
        :param project_id: Id of the project
        :return: Outcomes of the unprotect and protect calls
        """
        print(f"Protecting default branch in project {name}...")
        project = gl.projects.get(project_id, lazy=True)
        branch = config.default_branch

        # plain 404: the branch was not protected to begin with
        unprotect = Provisioner.attempt(
            f"unprotect {branch}",
            lambda: project.protectedbranches.delete(branch),
            PolicyError, ok_codes=(404,))
        protect = Provisioner.attempt(
            f"protect {branch}",
            lambda: project.protectedbranches.create({
                "name": branch,
                "allow_force_push": False,
                "merge_access_level": DEVELOPER_ACCESS,
                "push_access_level": DEVELOPER_ACCESS,
                "unprotect_access_level": ADMIN_ACCESS,
            }),
            PolicyError)
        if protect.ok:
            print(f"Protections applied to default branch in project {name}.")
        return [unprotect, protect]

    @staticmethod
    def add_users_to_project(gl: gitlab.Gitlab, name: str, project_id: int,
                             user_ids: Sequence[int]) -> List[StepResult]:
        """Adds each user to the project as a developer

        :param gl: An authenticated gitlab.Gitlab client
        :param name: Name of the project
        :param project_id: Id of the project
        :param user_ids: GitLab user ids of the students
        :return: One outcome per user
        """
        print(f"Adding user(s) to project {name}...")
        project = gl.projects.get(project_id, lazy=True)
        steps = []
        for user_id in user_ids:
            # 409: already a member
            steps.append(Provisioner.attempt(
                f"add member {user_id}",
                lambda: project.members.create({
                    "user_id": user_id,
                    "access_level": DEVELOPER_ACCESS,
                }),
                MembershipError, ok_codes=(409,)))
        added = sum(1 for s in steps if s.ok)
        print(f"Added {added} student(s) to project {name}.")
        return steps

    @staticmethod
    def provision_entry(gl: gitlab.Gitlab, config: Config, import_url: str,
                        group: Group, row: int, team: Team) -> EntryResult:
        """Runs one roster line through creation, protection and membership

        :param gl: An authenticated gitlab.Gitlab client
        :param config: The Config object for the run
        :param import_url: Authenticated URL of the template repository
        :param group: The destination group
        :param row: 1-based roster line
        :param team: Students on that line
        :return: What happened to the line
        """
        result = EntryResult(row, tuple(team))
        result.name = config.project_name(row, team)
        result.state = EntryState.NAMING_RESOLVED

        result.identities = Provisioner.convert_to_user_ids(gl, team)
        for identity in result.identities:
            if not identity.resolved:
                result.steps.append(StepResult(
                    f"resolve {identity.student}", False,
                    ResolutionMiss(f"No gitlab user found for student "
                                   f"{identity.student}")))
        result.state = EntryState.IDENTITIES_RESOLVED
        if not result.user_ids:
            print(f"Unable to create project {result.name}; "
                  f"no gitlab users found")
            result.state = EntryState.SKIPPED_NO_IDENTITIES
            return result

        if config.skip_existing:
            existing = Provisioner.find_existing_project(group, result.name)
            if existing is not None:
                print(f"Project {result.name} already exists with id "
                      f"{existing}; skipping.")
                result.project_id = existing
                result.state = EntryState.SKIPPED_EXISTING
                return result

        try:
            result.project_id = Provisioner.create_project(
                gl, config, import_url, result.name, group.id)
        except ProvisionError as e:
            print(e, file=sys.stderr)
            print(f"Failed to create project {result.name}!")
            result.error = e
            result.state = EntryState.SKIPPED_CREATE_FAILED
            return result
        print(f"Created project {result.name} with id {result.project_id}!")
        result.state = EntryState.PROJECT_CREATED

        # branch calls answer 404 until GitLab is done setting up the project
        try:
            Provisioner.wait_until_ready(gl, config, result.project_id)
        except PolicyError as e:
            print(e, file=sys.stderr)
            result.steps.append(StepResult("wait for default branch", False,
                                           e))
        else:
            result.steps.extend(Provisioner.configure_branch_protection(
                gl, config, result.name, result.project_id))
        result.state = EntryState.POLICY_APPLIED

        result.steps.extend(Provisioner.add_users_to_project(
            gl, result.name, result.project_id, result.user_ids))
        result.state = EntryState.MEMBERS_GRANTED

        print(f"Setup of repo {result.name} is complete.")
        result.state = EntryState.DONE
        return result

    @staticmethod
    def create_repos(gl: gitlab.Gitlab, config: Config,
                     roster: Sequence[Team]) -> List[EntryResult]:
        """Provisions one project per roster line

        The current user and the destination group are resolved once; if
        either lookup fails, NamespaceLookupError is raised before any
        project is created.

        :param gl: An authenticated gitlab.Gitlab client
        :param config: The Config object for the run
        :param roster: Parsed roster, one team per line
        :return: One result per roster line, in roster order
        """
        current_user = Provisioner.find_current_user(gl)
        import_url = config.import_url(current_user)
        group = Provisioner.find_group(gl, config.group_name)
        if config.verbose:
            print(f"Group {config.group_name} has id {group.id}")

        results = []
        for row, team in enumerate(roster, start=1):
            results.append(Provisioner.provision_entry(
                gl, config, import_url, group, row, team))
        return results

    @staticmethod
    def print_summary(results: Sequence[EntryResult]) -> None:
        """Prints one line per roster entry and the failed steps, if any"""
        done = sum(1 for r in results if r.state == EntryState.DONE)
        print(f"{done} of {len(results)} roster line(s) fully provisioned.")
        for r in results:
            label = r.name if r.team else "(empty line)"
            print(f"  {r.row:>3} {label}: {r.state.value}")
            for step in r.failed_steps:
                print(f"        {step.error}")
