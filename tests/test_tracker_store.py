"""
tests/test_tracker_store.py -- Unit tests for tracker/store.py.

Covers:
  - Project create/get with members, relation projection, newest-first listing
  - add_member/remove_member idempotence, set_leader (including clearing)
  - Removing a member (directly or via update_project) hands their tasks to the leader
  - update_project partial updates; update_task/delete_task
  - delete_project cascades to tasks, assignees and comments
  - detach_user nulls leadership and drops memberships/assignments
  - Task create/list/status update; comment create/list/relations/delete
"""

import pytest

from tracker.models import Comment, Project, ProjectRelations, Task, TaskPriority, TaskStatus
from tracker.store import TrackerStore


@pytest.fixture()
def project_id(tracker: TrackerStore) -> int:
    return tracker.create_project(Project(name="Website", description="Relaunch", leader_id=1, member_ids={2, 3}))


class TestProjects:
    def test_create_and_get(self, tracker: TrackerStore, project_id: int) -> None:
        project = tracker.get_project(project_id)
        assert project is not None
        assert project.name == "Website"
        assert project.leader_id == 1
        assert project.member_ids == {2, 3}
        assert project.created_at

    def test_missing_project(self, tracker: TrackerStore) -> None:
        assert tracker.get_project(999) is None
        assert tracker.get_project_relations(999) is None

    def test_relations_projection(self, tracker: TrackerStore, project_id: int) -> None:
        assert tracker.get_project_relations(project_id) == ProjectRelations(
            project_id=project_id, leader_id=1, member_ids=frozenset({2, 3})
        )

    def test_list_newest_first(self, tracker: TrackerStore, project_id: int) -> None:
        second = tracker.create_project(Project(name="Mobile app"))
        assert [p.id for p in tracker.list_projects()] == [second, project_id]

    def test_add_member_is_idempotent(self, tracker: TrackerStore, project_id: int) -> None:
        assert tracker.add_member(project_id, 4) is True
        assert tracker.add_member(project_id, 4) is False
        assert tracker.get_project(project_id).member_ids == {2, 3, 4}

    def test_remove_member(self, tracker: TrackerStore, project_id: int) -> None:
        assert tracker.remove_member(project_id, 2) is True
        assert tracker.remove_member(project_id, 2) is False
        assert tracker.get_project(project_id).member_ids == {3}

    def test_remove_member_hands_tasks_to_leader(self, tracker: TrackerStore, project_id: int) -> None:
        solo = tracker.create_task(Task(project_id=project_id, title="Solo", assignee_ids={2}))
        shared = tracker.create_task(Task(project_id=project_id, title="Shared", assignee_ids={1, 2, 3}))
        untouched = tracker.create_task(Task(project_id=project_id, title="Other", assignee_ids={3}))
        elsewhere = tracker.create_project(Project(name="Docs", leader_id=5, member_ids={2}))
        foreign = tracker.create_task(Task(project_id=elsewhere, title="Docs", assignee_ids={2}))

        assert tracker.remove_member(project_id, 2) is True

        assert tracker.get_task(solo).assignee_ids == {1}
        assert tracker.get_task(shared).assignee_ids == {1, 3}
        assert tracker.get_task(untouched).assignee_ids == {3}
        assert tracker.get_task(foreign).assignee_ids == {2}

    def test_remove_member_without_leader_unassigns(self, tracker: TrackerStore, project_id: int) -> None:
        tracker.set_leader(project_id, None)
        task_id = tracker.create_task(Task(project_id=project_id, title="Solo", assignee_ids={2}))
        tracker.remove_member(project_id, 2)
        assert tracker.get_task(task_id).assignee_ids == set()

    def test_project_exists(self, tracker: TrackerStore, project_id: int) -> None:
        assert tracker.project_exists(project_id) is True
        assert tracker.project_exists(999) is False

    def test_update_project_fields(self, tracker: TrackerStore, project_id: int) -> None:
        assert tracker.update_project(project_id, name=" Website v2 ", description="Phase two")
        project = tracker.get_project(project_id)
        assert project.name == "Website v2"
        assert project.description == "Phase two"
        assert project.leader_id == 1
        assert project.member_ids == {2, 3}
        assert tracker.update_project(999, name="x") is False

    def test_update_project_members_reassigns_dropped(self, tracker: TrackerStore, project_id: int) -> None:
        task_id = tracker.create_task(Task(project_id=project_id, title="Solo", assignee_ids={3}))
        tracker.update_project(project_id, member_ids={2, 4})
        assert tracker.get_project(project_id).member_ids == {2, 4}
        assert tracker.get_task(task_id).assignee_ids == {1}

    def test_update_project_leader(self, tracker: TrackerStore, project_id: int) -> None:
        task_id = tracker.create_task(Task(project_id=project_id, title="Solo", assignee_ids={3}))
        tracker.update_project(project_id, leader_id=5, member_ids={2})
        assert tracker.get_project(project_id).leader_id == 5
        assert tracker.get_task(task_id).assignee_ids == {5}

        tracker.update_project(project_id, leader_id=None)
        assert tracker.get_project(project_id).leader_id is None
        tracker.update_project(project_id, name="Renamed")
        assert tracker.get_project(project_id).leader_id is None

    def test_set_and_clear_leader(self, tracker: TrackerStore, project_id: int) -> None:
        assert tracker.set_leader(project_id, 5)
        assert tracker.get_project(project_id).leader_id == 5
        assert tracker.set_leader(project_id, None)
        assert tracker.get_project_relations(project_id).leader_id is None
        assert tracker.set_leader(999, 5) is False

    def test_delete_project_cascades(self, tracker: TrackerStore, project_id: int) -> None:
        task_id = tracker.create_task(Task(project_id=project_id, title="Design", assignee_ids={2}))
        comment_id = tracker.create_comment(Comment(task_id=task_id, author_id=2, content="On it"))

        assert tracker.delete_project(project_id) is True
        assert tracker.get_project(project_id) is None
        assert tracker.get_task(task_id) is None
        assert tracker.get_comment(comment_id) is None
        assert tracker.delete_project(project_id) is False

    def test_detach_user(self, tracker: TrackerStore, project_id: int) -> None:
        other = tracker.create_project(Project(name="Docs", leader_id=2, member_ids={1}))
        task_id = tracker.create_task(Task(project_id=project_id, title="Design", assignee_ids={1, 2}))

        tracker.detach_user(1)

        assert tracker.get_project(project_id).leader_id is None
        assert tracker.get_project(other).member_ids == set()
        assert tracker.get_project(other).leader_id == 2
        assert tracker.get_task(task_id).assignee_ids == {2}


class TestTasks:
    def test_create_and_get(self, tracker: TrackerStore, project_id: int) -> None:
        task_id = tracker.create_task(
            Task(project_id=project_id, title="  Design  ", priority=TaskPriority.HIGH, assignee_ids={2, 3})
        )
        task = tracker.get_task(task_id)
        assert task.title == "Design"
        assert task.status is TaskStatus.PENDING
        assert task.priority is TaskPriority.HIGH
        assert task.assignee_ids == {2, 3}

    def test_list_is_scoped_to_project(self, tracker: TrackerStore, project_id: int) -> None:
        other = tracker.create_project(Project(name="Docs"))
        first = tracker.create_task(Task(project_id=project_id, title="A"))
        second = tracker.create_task(Task(project_id=project_id, title="B"))
        tracker.create_task(Task(project_id=other, title="C"))
        assert [t.id for t in tracker.list_tasks(project_id)] == [first, second]

    def test_update_status(self, tracker: TrackerStore, project_id: int) -> None:
        task_id = tracker.create_task(Task(project_id=project_id, title="A"))
        assert tracker.update_task_status(task_id, TaskStatus.IN_PROGRESS)
        assert tracker.get_task(task_id).status is TaskStatus.IN_PROGRESS
        assert tracker.update_task_status(999, TaskStatus.DONE) is False


    def test_update_task(self, tracker: TrackerStore, project_id: int) -> None:
        task_id = tracker.create_task(Task(project_id=project_id, title="A", assignee_ids={2}))
        assert tracker.update_task(
            task_id, title=" B ", priority=TaskPriority.LOW, status=TaskStatus.DONE, assignee_ids={3}
        )
        task = tracker.get_task(task_id)
        assert task.title == "B"
        assert task.priority is TaskPriority.LOW
        assert task.status is TaskStatus.DONE
        assert task.assignee_ids == {3}
        assert task.description == ""

    def test_update_task_keeps_assignees_by_default(self, tracker: TrackerStore, project_id: int) -> None:
        task_id = tracker.create_task(Task(project_id=project_id, title="A", assignee_ids={2}))
        tracker.update_task(task_id, description="details")
        assert tracker.get_task(task_id).assignee_ids == {2}
        assert tracker.update_task(999, title="x") is False

    def test_delete_task_cascades(self, tracker: TrackerStore, project_id: int) -> None:
        task_id = tracker.create_task(Task(project_id=project_id, title="A", assignee_ids={2}))
        comment_id = tracker.create_comment(Comment(task_id=task_id, author_id=2, content="hi"))
        assert tracker.delete_task(task_id) is True
        assert tracker.get_task(task_id) is None
        assert tracker.get_comment(comment_id) is None
        assert tracker.delete_task(task_id) is False


class TestComments:
    def test_comment_lifecycle(self, tracker: TrackerStore, project_id: int) -> None:
        task_id = tracker.create_task(Task(project_id=project_id, title="A"))
        first = tracker.create_comment(Comment(task_id=task_id, author_id=2, content="first"))
        second = tracker.create_comment(Comment(task_id=task_id, author_id=3, content="second"))

        assert [c.id for c in tracker.list_comments(task_id)] == [second, first]

        relations = tracker.get_comment_relations(first)
        assert relations.author_id == 2
        assert relations.task_id == task_id

        assert tracker.delete_comment(first) is True
        assert tracker.get_comment(first) is None
        assert tracker.get_comment_relations(first) is None
        assert tracker.delete_comment(first) is False
