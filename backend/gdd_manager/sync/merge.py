"""Merge engine: whole-project last-writer-wins reconciliation."""

from collections.abc import Iterable
from dataclasses import dataclass, field

from gdd_manager.models.project import Project


@dataclass
class MergeResult:
    projects: list[Project] = field(default_factory=list)
    to_push: list[Project] = field(default_factory=list)

    @property
    def push_ids(self) -> list[str]:
        return [p.id for p in self.to_push]


def merge_projects(local: Iterable[Project], remote: Iterable[Project]) -> MergeResult:
    """Reconcile a local collection with a remote one.

    Projects are matched by id. A project only one side has is kept; local-only
    projects are marked for push. When both sides have it, the strictly newer
    ``updated_at`` wins wholesale (sections included) and ties go to the remote
    copy. A winning local copy is marked for push.
    """
    local_by_id: dict[str, Project] = {}
    for p in local:
        local_by_id[p.id] = p
    remote_by_id: dict[str, Project] = {}
    for p in remote:
        remote_by_id[p.id] = p

    result = MergeResult()
    for pid, remote_project in remote_by_id.items():
        local_project = local_by_id.get(pid)
        if local_project is not None and local_project.updated_at_dt() > remote_project.updated_at_dt():
            result.projects.append(local_project)
            result.to_push.append(local_project)
        else:
            result.projects.append(remote_project)

    for pid, local_project in local_by_id.items():
        if pid not in remote_by_id:
            result.projects.append(local_project)
            result.to_push.append(local_project)

    return result
