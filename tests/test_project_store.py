import sys
import os
import asyncio
import unittest

# Add app to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from app.core.domain import (
    Caller, DataSource, IngestionStatus, ProjectRole, UserRole, normalize_id,
)
from app.core.errors import (
    GatewayFailure, MalformedUpload, NotAuthenticated, NotAuthorized, NotFound, TooFewColumns,
)
from app.services import project_service
from app.services.project_store import ProjectStore, StoreStatus
from fake_gateway import InMemoryGateway

COLUMNS = ("id", "name", "region", "revenue", "notes")


class StoreTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.gateway = InMemoryGateway()
        self.admin_user = self.gateway.add_user("admin@example.com", UserRole.ADMIN)
        self.alice = self.gateway.add_user("alice@example.com")
        self.bob = self.gateway.add_user("bob@example.com")
        self.admin = Caller(id=self.admin_user.id, role=UserRole.ADMIN, email=self.admin_user.email)
        self.alice_caller = Caller(id=str(self.alice.id), role=UserRole.USER, email=self.alice.email)
        self.bob_caller = Caller(id=self.bob.id, role=UserRole.USER, email=self.bob.email)

        self.sales = self.gateway.add_project(
            "Sales", created_by=self.admin_user.id, columns=COLUMNS, selected_columns=("revenue", "id", "name", "region"),
        )
        self.hr = self.gateway.add_project("HR", created_by=self.admin_user.id)
        self.alice_grant = self.gateway.add_assignment(self.sales.id, self.alice, ProjectRole.VIEWER)
        self.gateway.add_assignment(self.hr.id, self.bob, ProjectRole.EDITOR)
        self.store = ProjectStore(self.gateway)


class TestLoading(StoreTestCase):
    async def test_admin_loads_every_project_newest_first(self):
        snapshot = await self.store.set_identity(self.admin)
        self.assertEqual(snapshot.status, StoreStatus.READY)
        self.assertEqual([p.name for p in await self.store.accessible_projects()], ["HR", "Sales"])
        self.assertEqual(len(snapshot.assignments), 2)

    async def test_columns_are_attached_in_order(self):
        await self.store.set_identity(self.admin)
        project = await self.store.get_project(self.sales.id)
        self.assertEqual(project.columns, COLUMNS)
        self.assertEqual(project.selected_columns, ("revenue", "id", "name", "region"))

    async def test_user_loads_only_assigned_projects(self):
        await self.store.set_identity(self.alice_caller)
        projects = await self.store.accessible_projects()
        self.assertEqual([p.id for p in projects], [self.sales.id])
        self.assertEqual(await self.store.effective_role(self.sales.id), ProjectRole.VIEWER)

    async def test_unassigned_project_is_not_authorized_for_users(self):
        await self.store.set_identity(self.alice_caller)
        with self.assertRaises(NotAuthorized) as ctx:
            await self.store.get_project(self.hr.id)
        self.assertEqual(ctx.exception.headers["X-Allowed-View"], "/api/v1/projects")

    async def test_missing_project_is_not_found_for_admins(self):
        await self.store.set_identity(self.admin)
        with self.assertRaises(NotFound):
            await self.store.get_project(9999)

    async def test_logout_clears_the_cache(self):
        await self.store.set_identity(self.admin)
        await self.store.set_identity(None)
        self.assertEqual(self.store.snapshot.projects, ())
        with self.assertRaises(NotAuthenticated):
            await self.store.accessible_projects()

    async def test_failed_refresh_keeps_previous_snapshot(self):
        await self.store.set_identity(self.admin)
        before = self.store.snapshot.projects
        self.gateway.fail_next("list_projects")
        with self.assertRaises(GatewayFailure):
            await self.store.refresh()
        self.assertEqual(self.store.snapshot.projects, before)
        self.assertTrue(self.store.snapshot.retryable)
        self.assertIsNotNone(self.store.snapshot.last_error)
        # Retrying succeeds and clears the error
        await self.store.refresh()
        self.assertIsNone(self.store.snapshot.last_error)

    async def test_unexpected_errors_become_gateway_failures(self):
        self.gateway.fail_next("list_project_assignments", RuntimeError("connection reset"))
        with self.assertRaises(GatewayFailure) as ctx:
            await self.store.set_identity(self.alice_caller)
        self.assertIsInstance(ctx.exception.cause, RuntimeError)

    async def test_identity_change_discards_in_flight_load(self):
        gate = self.gateway.hold("list_projects")
        first = asyncio.create_task(self.store.set_identity(self.admin))
        for _ in range(20):
            await asyncio.sleep(0)
        self.assertIn("list_projects", self.gateway.calls)

        await self.store.set_identity(self.alice_caller)
        gate.set()
        await first

        snapshot = self.store.snapshot
        self.assertEqual(snapshot.caller, self.alice_caller)
        self.assertEqual([p.id for p in snapshot.projects], [self.sales.id])

    async def test_listener_failures_do_not_break_publishing(self):
        seen = []

        def broken(snapshot):
            raise ValueError("boom")

        self.store.subscribe(broken)
        unsubscribe = self.store.subscribe(seen.append)
        await self.store.set_identity(self.admin)
        self.assertTrue(seen)
        self.assertEqual(seen[-1].status, StoreStatus.READY)
        unsubscribe()
        await self.store.refresh()
        self.assertEqual(seen[-1].status, StoreStatus.READY)


class TestProjectMutations(StoreTestCase):
    async def test_created_project_is_visible_to_admin_first(self):
        await self.store.set_identity(self.admin)
        created = await self.store.create_project({"name": "Finance", "data_source": DataSource.CSV, "tags": ["q1"]})
        projects = await self.store.accessible_projects()
        self.assertEqual(projects[0].id, created.id)
        self.assertEqual(created.ingestion_status, IngestionStatus.EMPTY)
        self.assertEqual(normalize_id(created.created_by), normalize_id(self.admin.id))

    async def test_creator_is_not_auto_assigned(self):
        await self.store.set_identity(self.admin)
        created = await self.store.create_project({"name": "Finance"})
        self.assertEqual(await self.store.project_members(created.id), [])

    async def test_users_cannot_create_projects(self):
        await self.store.set_identity(self.bob_caller)
        with self.assertRaises(NotAuthorized):
            await self.store.create_project({"name": "Nope"})
        self.assertNotIn("create_project", self.gateway.calls)

    async def test_delete_removes_project_and_assignments_in_one_swap(self):
        await self.store.set_identity(self.admin)
        published = []
        self.store.subscribe(published.append)

        await self.store.delete_project(self.sales.id)

        for snapshot in published:
            project_ids = {normalize_id(p.id) for p in snapshot.projects}
            for assignment in snapshot.assignments:
                self.assertIn(normalize_id(assignment.project_id), project_ids)
        self.assertEqual([p.id for p in await self.store.accessible_projects()], [self.hr.id])

    async def test_failed_update_rolls_back(self):
        await self.store.set_identity(self.admin)
        before = self.store.snapshot
        self.gateway.fail_next("update_project")
        with self.assertRaises(GatewayFailure):
            await self.store.update_project(self.sales.id, {"name": "Renamed"})
        self.assertEqual(self.store.snapshot, before)
        self.assertEqual((await self.store.get_project(self.sales.id)).name, "Sales")

    async def test_update_keeps_cached_columns(self):
        await self.store.set_identity(self.admin)
        updated = await self.store.update_project(self.sales.id, {"name": "Sales EU", "refresh_frequency": "weekly"})
        self.assertEqual(updated.name, "Sales EU")
        self.assertEqual(updated.columns, COLUMNS)
        self.assertEqual(self.store.snapshot.status, StoreStatus.READY)

    async def test_failed_delete_restores_project(self):
        await self.store.set_identity(self.admin)
        self.gateway.fail_next("delete_project")
        with self.assertRaises(GatewayFailure):
            await self.store.delete_project(self.sales.id)
        self.assertEqual(len(await self.store.accessible_projects()), 2)
        self.assertEqual(len(self.store.snapshot.assignments), 2)

    async def test_failed_update_does_not_bring_back_deleted_project(self):
        await self.store.set_identity(self.admin)
        gate = self.gateway.hold("update_project")
        self.gateway.fail_next("update_project")

        update = asyncio.create_task(self.store.update_project(self.sales.id, {"name": "Renamed"}))
        for _ in range(20):
            await asyncio.sleep(0)
        delete = asyncio.create_task(self.store.delete_project(self.sales.id))
        for _ in range(20):
            await asyncio.sleep(0)
        # The delete waits for the pending update to settle
        self.assertNotIn("delete_project", self.gateway.calls)

        gate.set()
        with self.assertRaises(GatewayFailure):
            await update
        await delete

        self.assertNotIn(self.sales.id, self.gateway.projects)
        self.assertEqual([p.id for p in await self.store.accessible_projects()], [self.hr.id])
        self.assertNotIn(
            normalize_id(self.sales.id), {normalize_id(a.project_id) for a in self.store.snapshot.assignments}
        )
        self.assertEqual(self.store.snapshot.status, StoreStatus.READY)


class TestAssignments(StoreTestCase):
    async def test_assign_by_email(self):
        await self.store.set_identity(self.admin)
        assignment = await self.store.add_assignment(self.hr.id, "Alice@Example.com ", ProjectRole.EDITOR)
        self.assertEqual(assignment.user_id, normalize_id(self.alice.id))
        members = await self.store.project_members(self.hr.id)
        self.assertIn(assignment.id, [m.id for m in members])

        alice_store = ProjectStore(self.gateway)
        await alice_store.set_identity(self.alice_caller)
        self.assertEqual(
            sorted(p.id for p in await alice_store.accessible_projects()), sorted([self.sales.id, self.hr.id])
        )
        self.assertEqual(await alice_store.effective_role(self.hr.id), ProjectRole.EDITOR)

    async def test_unknown_email_is_not_found(self):
        await self.store.set_identity(self.admin)
        with self.assertRaises(NotFound):
            await self.store.add_assignment(self.hr.id, "ghost@example.com", ProjectRole.VIEWER)
        self.assertNotIn("create_project_assignment", self.gateway.calls)

    async def test_remove_assignment(self):
        await self.store.set_identity(self.admin)
        await self.store.remove_assignment(self.alice_grant.id, project_id=self.sales.id)
        self.assertEqual(await self.store.project_members(self.sales.id), [])

        alice_store = ProjectStore(self.gateway)
        await alice_store.set_identity(self.alice_caller)
        self.assertEqual(await alice_store.accessible_projects(), [])

    async def test_remove_assignment_from_wrong_project(self):
        await self.store.set_identity(self.admin)
        with self.assertRaises(NotFound):
            await self.store.remove_assignment(self.alice_grant.id, project_id=self.hr.id)

    async def test_only_admins_manage_members(self):
        await self.store.set_identity(self.bob_caller)
        with self.assertRaises(NotAuthorized):
            await self.store.add_assignment(self.hr.id, "alice@example.com", ProjectRole.VIEWER)

    async def test_members_are_hidden_from_non_admins(self):
        await self.store.set_identity(self.bob_caller)
        with self.assertRaises(NotAuthorized):
            await self.store.project_members(self.hr.id)


class TestColumnSelection(StoreTestCase):
    async def test_editor_can_select_columns(self):
        await self.store.set_identity(self.admin)
        await self.store.apply_ingestion(self.hr.id, ["a", "b", "c", "d"], [{"a": 1, "b": 2, "c": 3, "d": 4}])

        await self.store.set_identity(self.bob_caller)
        updated = await self.store.select_columns(self.hr.id, ["d", "c", "b", "a"])
        self.assertEqual(updated.selected_columns, ("d", "c", "b", "a"))

        fresh = ProjectStore(self.gateway)
        await fresh.set_identity(self.bob_caller)
        self.assertEqual(await fresh.visible_columns(self.hr.id), ["d", "c", "b", "a"])

    async def test_viewer_cannot_select_columns(self):
        await self.store.set_identity(self.alice_caller)
        with self.assertRaises(NotAuthorized):
            await self.store.select_columns(self.sales.id, list(COLUMNS))

    async def test_rejected_selection_touches_nothing(self):
        await self.store.set_identity(self.admin)
        before = self.store.snapshot
        with self.assertRaises(TooFewColumns) as ctx:
            await self.store.select_columns(self.sales.id, ["id", "name"])
        self.assertEqual(ctx.exception.needed, 2)
        self.assertEqual(self.store.snapshot, before)
        self.assertNotIn("upsert_column_selection", self.gateway.calls)

    async def test_failed_selection_rolls_back(self):
        await self.store.set_identity(self.admin)
        self.gateway.fail_next("upsert_column_selection")
        with self.assertRaises(GatewayFailure):
            await self.store.select_columns(self.sales.id, list(COLUMNS))
        project = await self.store.get_project(self.sales.id)
        self.assertEqual(project.selected_columns, ("revenue", "id", "name", "region"))


class TestIngestionAndReads(StoreTestCase):
    async def test_reingestion_keeps_surviving_selection(self):
        await self.store.set_identity(self.admin)
        rows = [{"id": 1, "name": "a", "region": "EU", "revenue": 10.5}]
        project = await self.store.apply_ingestion(self.sales.id, ["id", "name", "region", "revenue"], rows)
        self.assertEqual(project.selected_columns, ("revenue", "id", "name", "region"))
        self.assertEqual(project.ingestion_status, IngestionStatus.COMPLETE)
        self.assertEqual(self.gateway.projects[self.sales.id].ingestion_status, IngestionStatus.COMPLETE)

    async def test_interrupted_ingestion_is_reported_on_read(self):
        await self.store.set_identity(self.admin)
        self.gateway.fail_next("replace_data_rows")
        with self.assertRaises(GatewayFailure):
            await self.store.apply_ingestion(self.hr.id, ["a", "b", "c", "d"], [{"a": 1}])
        self.assertEqual(self.gateway.projects[self.hr.id].ingestion_status, IngestionStatus.PENDING)

        fresh = ProjectStore(self.gateway)
        await fresh.set_identity(self.admin)
        with self.assertRaises(MalformedUpload):
            await project_service.get_project_data(fresh, self.hr.id)

    async def test_viewer_reads_only_selected_columns(self):
        await self.store.set_identity(self.admin)
        await self.store.apply_ingestion(
            self.sales.id, list(COLUMNS),
            [{"id": i, "name": f"n{i}", "region": "EU", "revenue": i * 2, "notes": "secret"} for i in range(3)],
        )

        viewer_store = ProjectStore(self.gateway)
        await viewer_store.set_identity(self.alice_caller)
        page = await project_service.get_project_data(viewer_store, self.sales.id, limit=2)
        self.assertEqual(page.role, ProjectRole.VIEWER)
        self.assertEqual(page.columns, ["revenue", "id", "name", "region"])
        self.assertEqual(page.total_rows, 3)
        self.assertEqual(len(page.rows), 2)
        self.assertNotIn("notes", page.rows[0])

    async def test_page_size_is_capped(self):
        self.assertEqual(project_service.clamp_page_size(None), 100)
        self.assertEqual(project_service.clamp_page_size(5), 5)
        self.assertEqual(project_service.clamp_page_size(10_000), 100)

    async def test_projects_for_user_uses_stored_role(self):
        pairs = await project_service.list_projects_for_user(self.gateway, self.bob.id)
        self.assertEqual([(p.id, role) for p, role in pairs], [(self.hr.id, ProjectRole.EDITOR)])
        with self.assertRaises(NotFound):
            await project_service.list_projects_for_user(self.gateway, 4242)


class TestEndToEnd(unittest.IsolatedAsyncioTestCase):
    async def test_admin_curates_and_shares_a_project(self):
        gateway = InMemoryGateway()
        admin_user = gateway.add_user("admin@example.com", UserRole.ADMIN)
        u1 = gateway.add_user("u1@example.com")
        admin = Caller(id=admin_user.id, role=UserRole.ADMIN)

        store = ProjectStore(gateway)
        await store.set_identity(admin)
        p1 = await store.create_project({"name": "P1"})
        self.assertEqual(p1.columns, ())

        columns = ["id", "name", "region", "revenue"]
        rows = [
            {"id": 1, "name": "Widget", "region": "EU", "revenue": 100},
            {"id": 2, "name": "Gadget", "region": "US", "revenue": 250},
        ]
        await store.apply_ingestion(p1.id, columns, rows)

        with self.assertRaises(TooFewColumns) as ctx:
            await store.select_columns(p1.id, ["name", "region", "revenue"])
        self.assertEqual(ctx.exception.needed, 1)
        await store.select_columns(p1.id, columns)

        await store.add_assignment(p1.id, "u1@example.com", ProjectRole.VIEWER)

        u1_store = ProjectStore(gateway)
        await u1_store.set_identity(Caller(id=str(u1.id), role=UserRole.USER))
        self.assertEqual([p.id for p in await u1_store.accessible_projects()], [p1.id])
        self.assertEqual(await u1_store.effective_role(p1.id), ProjectRole.VIEWER)
        self.assertEqual(await u1_store.visible_columns(p1.id), columns)

        page = await project_service.get_project_data(u1_store, p1.id)
        self.assertEqual(page.rows, rows)


if __name__ == '__main__':
    unittest.main()
