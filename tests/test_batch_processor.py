import unittest
from helpers import FakeMongoConnector
from sqltomongo.errors import DatabaseConnectionError, LoadCountMismatchError
from sqltomongo.services.batch_processor import BatchLoader


def make_documents(first: int, count: int, identity: bool = True):
    if not identity:
        return [{"RowID": i, "name": f"row-{i}"} for i in range(first, first + count)]
    return [{"_id": i * 10, "RowID": i} for i in range(first, first + count)]


class TestBatchLoader(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.target = FakeMongoConnector()
        self.loader = BatchLoader(self.target, retry_times=3, retry_interval=0)

    async def test_reset_page_clears_before_insert(self):
        self.target.collections["orders"] = [{"RowID": 99}]

        inserted = await self.loader.load_page("orders", make_documents(1, 5), True)

        self.assertEqual(inserted, 5)
        self.assertEqual(self.target.operations[0], ("clear", "orders"))
        self.assertEqual(self.target.operations[1][0], "insert")
        self.assertEqual([d["RowID"] for d in self.target.collections["orders"]], [1, 2, 3, 4, 5])

    async def test_continuation_page_does_not_clear(self):
        await self.loader.load_page("orders", make_documents(8, 3), False)

        self.assertEqual(self.target.clears("orders"), 0)
        self.assertEqual(self.target.inserts("orders"), [[8, 9, 10]])

    async def test_whole_page_is_one_insert(self):
        await self.loader.load_page("orders", make_documents(1, 250), False)
        self.assertEqual(self.target.insert_calls, 1)

    async def test_empty_reset_page_still_clears(self):
        self.target.collections["orders"] = [{"RowID": 1}]

        inserted = await self.loader.load_page("orders", [], True)

        self.assertEqual(inserted, 0)
        self.assertEqual(self.target.collections["orders"], [])
        self.assertEqual(self.target.insert_calls, 0)

    async def test_count_mismatch_raises(self):
        self.target.insert_limits[1] = 8

        with self.assertRaises(LoadCountMismatchError) as ctx:
            await self.loader.load_page("orders", make_documents(1, 10), False)
        self.assertEqual(ctx.exception.expected, 10)
        self.assertEqual(ctx.exception.inserted, 8)

    async def test_retry_removes_partial_page(self):
        self.target.failing_inserts = 1

        inserted = await self.loader.load_page("orders", make_documents(11, 10, identity=False), False)

        self.assertEqual(inserted, 10)
        self.assertIn(("delete_rows", "orders", list(range(11, 21))), self.target.operations)
        self.assertEqual(sorted(d["RowID"] for d in self.target.collections["orders"]), list(range(11, 21)))

    async def test_retried_upsert_does_not_duplicate(self):
        self.target.failing_inserts = 1

        inserted = await self.loader.load_page("orders", make_documents(11, 10), False)

        self.assertEqual(inserted, 10)
        self.assertEqual(self.target.inserts("orders"), [list(range(11, 21))] * 2)
        self.assertEqual(sorted(d["_id"] for d in self.target.collections["orders"]), [i * 10 for i in range(11, 21)])

    async def test_reloading_page_with_identity_overwrites(self):
        """从较早的游标续传时，已写入的页按 _id 覆盖"""
        await self.loader.load_page("orders", make_documents(1, 5), True)
        await self.loader.load_page("orders", make_documents(6, 5), False)

        inserted = await self.loader.load_page("orders", make_documents(6, 5), False)

        self.assertEqual(inserted, 5)
        self.assertEqual(len(self.target.collections["orders"]), 10)
        self.assertEqual([op[0] for op in self.target.operations], ["clear", "insert", "upsert", "upsert"])

    async def test_reloading_page_without_identity_replaces_by_row_id(self):
        await self.loader.load_page("orders", make_documents(1, 5, identity=False), False)

        inserted = await self.loader.load_page("orders", make_documents(1, 5, identity=False), False)

        self.assertEqual(inserted, 5)
        self.assertEqual(sorted(d["RowID"] for d in self.target.collections["orders"]), [1, 2, 3, 4, 5])
        self.assertEqual(self.target.operations[2], ("delete_rows", "orders", [1, 2, 3, 4, 5]))

    async def test_retry_on_reset_page_clears_again(self):
        self.target.failing_inserts = 1

        await self.loader.load_page("orders", make_documents(1, 4), True)

        self.assertEqual(self.target.clears("orders"), 2)
        self.assertEqual(len(self.target.collections["orders"]), 4)

    async def test_connection_errors_exhaust_retries(self):
        self.target.failing_inserts = 3

        with self.assertRaises(DatabaseConnectionError):
            await self.loader.load_page("orders", make_documents(1, 4), False)
        self.assertEqual(self.target.insert_calls, 3)


if __name__ == '__main__':
    unittest.main()
