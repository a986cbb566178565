import sys
import os
import unittest

from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add app to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.domain import (
    Caller, DataSource, IngestionStatus, ProjectRole, RefreshFrequency, UserRole,
)
from app.core.errors import Conflict, GatewayFailure, NotFound
from app.db.session import enable_sqlite_foreign_keys, init_db
from app.models.project_model import ProjectUser
from app.services.project_store import ProjectStore
from app.services.repository import SqlAlchemyGateway


class TestSqlAlchemyGateway(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        enable_sqlite_foreign_keys(self.engine)
        init_db(bind=self.engine)
        self.Session = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.gateway = SqlAlchemyGateway(self.Session)

    def tearDown(self):
        self.engine.dispose()

    async def _seed(self):
        admin = await self.gateway.create_user("admin@example.com", "hash", UserRole.ADMIN)
        user = await self.gateway.create_user("User@Example.com", "hash", UserRole.USER)
        project = await self.gateway.create_project({
            "name": "Sales",
            "description": "Quarterly sales",
            "tags": ("finance", "q1"),
            "data_source": DataSource.CSV,
            "refresh_frequency": RefreshFrequency.WEEKLY,
            "created_by": admin.id,
        })
        return admin, user, project

    async def test_users(self):
        admin, user, _ = await self._seed()
        self.assertEqual(user.email, "user@example.com")
        self.assertEqual(user.role, UserRole.USER)
        self.assertEqual([u.id for u in await self.gateway.list_users(email="USER@example.com")], [user.id])
        self.assertEqual((await self.gateway.get_user(str(admin.id))).role, UserRole.ADMIN)
        self.assertIsNone(await self.gateway.get_user("not-a-number"))

        with self.assertRaises(Conflict):
            await self.gateway.create_user("user@example.com", "hash", UserRole.USER)

    async def test_project_round_trip(self):
        admin, _, project = await self._seed()
        self.assertEqual(project.data_source, DataSource.CSV)
        self.assertEqual(project.refresh_frequency, RefreshFrequency.WEEKLY)
        self.assertEqual(project.tags, ("finance", "q1"))
        self.assertEqual(project.ingestion_status, IngestionStatus.EMPTY)
        self.assertEqual(project.created_by, admin.id)

        updated = await self.gateway.update_project(project.id, {"name": "Sales EU", "is_public": True})
        self.assertEqual(updated.name, "Sales EU")
        self.assertTrue(updated.is_public)

        with self.assertRaises(NotFound):
            await self.gateway.update_project(4242, {"name": "x"})

    async def test_list_projects_newest_first_and_by_id(self):
        _, _, first = await self._seed()
        second = await self.gateway.create_project({"name": "HR"})
        self.assertEqual([p.id for p in await self.gateway.list_projects()], [second.id, first.id])
        self.assertEqual([p.id for p in await self.gateway.list_projects(ids=[str(first.id)])], [first.id])
        self.assertEqual(await self.gateway.list_projects(ids=[]), [])

    async def test_columns_and_selection(self):
        _, _, project = await self._seed()
        await self.gateway.replace_project_columns(project.id, ["a", "b", "c", "d"], selected=["c", "a"])
        columns = await self.gateway.list_project_columns(project.id)
        self.assertEqual([c.column_name for c in columns], ["a", "b", "c", "d"])
        self.assertEqual({c.column_name: c.selected_position for c in columns if c.is_selected}, {"c": 0, "a": 1})

        await self.gateway.set_column_selection(project.id, ["a", "b", "c", "d"], ["d", "b", "a", "c"])
        columns = await self.gateway.list_project_columns(project.id)
        self.assertTrue(all(c.is_selected for c in columns))
        self.assertEqual(
            [c.column_name for c in sorted(columns, key=lambda c: c.selected_position)], ["d", "b", "a", "c"]
        )

        # Unknown columns are appended
        await self.gateway.upsert_column_selection(project.id, "e", False)
        columns = await self.gateway.list_project_columns(project.id)
        self.assertEqual(columns[-1].column_name, "e")
        self.assertEqual(columns[-1].position, 4)

    async def test_rows_are_replaced(self):
        admin, _, project = await self._seed()
        await self.gateway.replace_data_rows(project.id, [{"a": 1}, {"a": 2}, {"a": 3}], created_by=admin.id)
        self.assertEqual(await self.gateway.count_data_rows(project.id), 3)
        await self.gateway.replace_data_rows(project.id, [{"a": "x"}])
        rows = await self.gateway.list_data_rows(project.id, 10)
        self.assertEqual([r.payload for r in rows], [{"a": "x"}])
        self.assertEqual(len(await self.gateway.list_data_rows(project.id, 0)), 0)

    async def test_assignments(self):
        _, user, project = await self._seed()
        assignment = await self.gateway.create_project_assignment(project.id, user.id, user.email, ProjectRole.EDITOR)
        self.assertEqual(assignment.user_id, str(user.id))
        self.assertEqual(assignment.role, ProjectRole.EDITOR)

        self.assertEqual(len(await self.gateway.list_project_assignments(user_id=str(user.id))), 1)
        self.assertEqual(len(await self.gateway.list_project_assignments(project_ids=[project.id])), 1)
        self.assertEqual(await self.gateway.list_project_assignments(project_ids=[]), [])

        with self.assertRaises(NotFound):
            await self.gateway.create_project_assignment(project.id, 4242, "ghost@example.com", ProjectRole.VIEWER)

        await self.gateway.delete_project_assignment(assignment.id)
        self.assertEqual(await self.gateway.list_project_assignments(), [])
        with self.assertRaises(NotFound):
            await self.gateway.delete_project_assignment(assignment.id)

    async def test_delete_project_cascades(self):
        _, user, project = await self._seed()
        await self.gateway.replace_project_columns(project.id, ["a"])
        await self.gateway.replace_data_rows(project.id, [{"a": 1}])
        await self.gateway.create_project_assignment(project.id, user.id, user.email, ProjectRole.VIEWER)

        await self.gateway.delete_project(project.id)

        self.assertEqual(await self.gateway.list_projects(), [])
        self.assertEqual(await self.gateway.list_project_columns(project.id), [])
        self.assertEqual(await self.gateway.count_data_rows(project.id), 0)
        self.assertEqual(await self.gateway.list_project_assignments(), [])

    async def test_delete_user_removes_assignments_and_keeps_projects(self):
        admin, user, project = await self._seed()
        await self.gateway.create_project_assignment(project.id, user.id, user.email, ProjectRole.VIEWER)
        await self.gateway.delete_user(user.id)
        await self.gateway.delete_user(admin.id)

        with self.Session() as db:
            self.assertEqual(db.scalars(select(ProjectUser)).all(), [])
        projects = await self.gateway.list_projects()
        self.assertEqual(len(projects), 1)
        self.assertIsNone(projects[0].created_by)

    async def test_ingestion_status(self):
        _, _, project = await self._seed()
        await self.gateway.set_ingestion_status(project.id, IngestionStatus.PENDING)
        self.assertEqual((await self.gateway.list_projects())[0].ingestion_status, IngestionStatus.PENDING)

    async def test_database_errors_become_gateway_failures(self):
        with self.Session() as db:
            db.connection().exec_driver_sql("DROP TABLE project_users")
            db.commit()
        with self.assertRaises(GatewayFailure) as ctx:
            await self.gateway.list_project_assignments()
        self.assertIsInstance(ctx.exception.cause, OperationalError)
        self.assertEqual(ctx.exception.status_code, 503)

    async def test_ping(self):
        self.assertTrue(await self.gateway.ping())

    async def test_store_over_sqlite(self):
        admin, user, project = await self._seed()
        store = ProjectStore(self.gateway)
        await store.set_identity(Caller(id=admin.id, role=UserRole.ADMIN))
        await store.apply_ingestion(project.id, ["id", "name", "region", "revenue"], [{"id": 1, "name": "a"}])
        await store.select_columns(project.id, ["revenue", "region", "name", "id"])
        await store.add_assignment(project.id, user.email, ProjectRole.VIEWER)

        user_store = ProjectStore(self.gateway)
        await user_store.set_identity(Caller(id=str(user.id), role=UserRole.USER))
        self.assertEqual(await user_store.visible_columns(project.id), ["revenue", "region", "name", "id"])
        self.assertEqual(
            (await user_store.get_project(project.id)).ingestion_status, IngestionStatus.COMPLETE
        )


if __name__ == '__main__':
    unittest.main()
