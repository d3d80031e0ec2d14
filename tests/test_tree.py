"""
TreeFetcher tests.

Most of these run against FakeClient, an in-process stand-in for
NotionClient that serves a canned tree with a per-request delay. The delays
are what make subtrees finish out of order; the assertions compare the result
with a plain sequential walk of the same tree.
"""

import random
import threading
import time
import uuid

import pytest
import responses
from responses import matchers

from conftest import API, list_body, nid, raw_block, raw_page, uid
from notion_export.errors import ApiError
from notion_export.models import ListPage, Node
from notion_export.tree import TreeFetcher


class FakeClient:
    """
    Serves `tree`: {parent NotionId: [page, page, ...]} where each page is a
    list of raw block dicts. Parents missing from the tree have no children.
    `delay(parent, page_index)` returns seconds to sleep before answering.
    """

    def __init__(self, tree, delay=None, database=None):
        self.tree = tree
        self.database = database or []
        self.delay = delay or (lambda parent, index: 0)
        self.calls = []
        self._lock = threading.Lock()

    def _serve(self, pages, parent, cursor):
        index = int(cursor) if cursor else 0
        with self._lock:
            self.calls.append((parent, index))
        time.sleep(self.delay(parent, index))
        has_more = index + 1 < len(pages)
        return ListPage(
            results=[Node.from_json(raw) for raw in pages[index]],
            next_cursor=str(index + 1) if has_more else None,
            has_more=has_more,
        )

    def fetch_page(self, block_id, cursor=None):
        return self._serve(self.tree.get(block_id, [[]]), block_id, cursor)

    def query_database(self, database_id, cursor=None):
        return self._serve(self.database, database_id, cursor)


def random_tree(seed, root, size=120):
    """A random tree of `size` blocks under `root`, spread over paginated parents."""
    rng = random.Random(seed)
    tree, parents, counter = {}, [root], [100]

    def new_block(parent):
        counter[0] += 1
        n = counter[0]
        has_children = rng.random() < 0.35
        tree.setdefault(parent, [[]])
        pages = tree[parent]
        if len(pages[-1]) >= rng.randint(1, 4):
            pages.append([])
        pages[-1].append(raw_block(n, has_children=has_children))
        if has_children:
            parents.append(nid(n))
            tree[nid(n)] = [[]]

    for _ in range(size):
        new_block(rng.choice(parents))
    return tree


def sequential(tree, parent):
    """Reference resolution: one request at a time, depth first."""
    out = []
    for page in tree.get(parent, [[]]):
        for raw in page:
            node_id = uuid.UUID(raw["id"]).hex
            children = sequential(tree, nid(int(node_id, 16))) if raw["has_children"] else []
            out.append((node_id, children))
    return out


def shape(nodes):
    return [(str(node.id), shape(node.children)) for node in nodes]


def random_delay(max_seconds):
    def delay(parent, index):
        return random.Random(f"{parent}/{index}").random() * max_seconds
    return delay


class TestOrdering:
    """Output order must not depend on which subtree finishes first."""

    @pytest.mark.parametrize("seed", range(5))
    def test_matches_sequential_resolution(self, seed):
        root = nid(1)
        tree = random_tree(seed, root)
        client = FakeClient(tree, delay=random_delay(0.004))

        nodes = TreeFetcher(client, max_workers=8).fetch_children(root)

        assert shape(nodes) == sequential(tree, root)

    def test_early_siblings_finishing_last(self):
        root = nid(1)
        tree = {root: [[raw_block(n, has_children=True) for n in range(10, 16)]]}
        for n in range(10, 16):
            tree[nid(n)] = [[raw_block(n * 10 + i) for i in range(3)]]

        # The first sibling's subtree is the slowest, the last one the fastest
        def delay(parent, index):
            return 0 if parent == root else (16 - int(str(parent), 16) % 100) * 0.003

        nodes = TreeFetcher(FakeClient(tree, delay=delay), max_workers=6).fetch_children(root)

        assert [node.id for node in nodes] == [nid(n) for n in range(10, 16)]
        for n, node in zip(range(10, 16), nodes):
            assert [child.id for child in node.children] == [nid(n * 10 + i) for i in range(3)]

    def test_single_worker_does_not_deadlock(self):
        root = nid(1)
        tree = random_tree(42, root, size=40)

        nodes = TreeFetcher(FakeClient(tree), max_workers=1).fetch_children(root)

        assert shape(nodes) == sequential(tree, root)


class TestPagination:
    def test_pages_of_one_parent_are_stitched_in_order(self):
        root = nid(1)
        tree = {
            root: [
                [raw_block(10), raw_block(11, has_children=True)],
                [raw_block(12)],
                [raw_block(13, has_children=True), raw_block(14)],
            ],
            nid(11): [[raw_block(110)], [raw_block(111)]],
            nid(13): [[raw_block(130)]],
        }
        client = FakeClient(tree, delay=random_delay(0.003))

        nodes = TreeFetcher(client).fetch_children(root)

        assert [node.id for node in nodes] == [nid(n) for n in (10, 11, 12, 13, 14)]
        assert [c.id for c in nodes[1].children] == [nid(110), nid(111)]
        assert [c.id for c in nodes[3].children] == [nid(130)]
        # Each parent's pages were requested strictly one after the other
        assert [index for parent, index in client.calls if parent == root] == [0, 1, 2]

    @responses.activate
    def test_three_pages_of_100_100_7(self, client):
        url = f"{API}/blocks/{uid(1)}/children"
        sizes, cursors = [100, 100, 7], [None, "cursor-1", "cursor-2"]
        start = 1000
        for i, (size, cursor) in enumerate(zip(sizes, cursors)):
            query = {"page_size": "100"}
            if cursor:
                query["start_cursor"] = cursor
            has_more = i < 2
            responses.add(
                responses.GET,
                url,
                json=list_body(
                    [raw_block(start + j) for j in range(size)],
                    next_cursor=cursors[i + 1] if has_more else None,
                    has_more=has_more,
                ),
                match=[matchers.query_param_matcher(query)],
            )
            start += size

        nodes = TreeFetcher(client).fetch_children(nid(1))

        assert len(nodes) == 207
        assert [node.id for node in nodes] == [nid(n) for n in range(1000, 1207)]
        assert len(responses.calls) == 3


class TestChildren:
    def test_flagged_item_with_no_children_gets_empty_list(self):
        root = nid(1)
        tree = {root: [[raw_block(2, has_children=True)]], nid(2): [[]]}

        nodes = TreeFetcher(FakeClient(tree)).fetch_children(root)

        assert nodes[0].has_children is True
        assert nodes[0].children == []

    def test_unflagged_item_is_never_expanded(self):
        root = nid(1)
        tree = {root: [[raw_block(2)]], nid(2): [[raw_block(3)]]}
        client = FakeClient(tree)

        nodes = TreeFetcher(client).fetch_children(root)

        assert nodes[0].children == []
        assert (nid(2), 0) not in client.calls

    def test_repeated_id_is_fetched_once_per_occurrence(self):
        root = nid(1)
        tree = {
            root: [[raw_block(2, has_children=True), raw_block(3, has_children=True)]],
            nid(2): [[raw_block(5, has_children=True)]],
            nid(3): [[raw_block(5, has_children=True)]],
            nid(5): [[raw_block(6)]],
        }
        client = FakeClient(tree)

        nodes = TreeFetcher(client).fetch_children(root)

        assert client.calls.count((nid(5), 0)) == 2
        assert nodes[0].children[0] is not nodes[1].children[0]
        assert shape(nodes[0].children) == shape(nodes[1].children)


class TestFailFast:
    def test_page_error_fails_whole_fetch_while_siblings_run(self):
        root = nid(1)
        slow_started, release = threading.Event(), threading.Event()
        tree = {
            root: [[raw_block(2, has_children=True), raw_block(3, has_children=True)]],
            nid(2): [[raw_block(20)]],
        }

        class FailingClient(FakeClient):
            def fetch_page(self, block_id, cursor=None):
                if block_id == nid(2):
                    slow_started.set()
                    release.wait(5)
                elif block_id == nid(3):
                    slow_started.wait(5)
                    raise ApiError("object_not_found", "Could not find block with ID: 3.", 404)
                return super().fetch_page(block_id, cursor)

        try:
            with pytest.raises(ApiError) as exc:
                TreeFetcher(FailingClient(tree), max_workers=4).fetch_children(root)
            assert slow_started.is_set()
        finally:
            release.set()

        assert exc.value.code == "object_not_found"
        assert exc.value.message == "Could not find block with ID: 3."

    def test_error_on_later_page_discards_earlier_pages(self):
        root = nid(1)

        class SecondPageFails(FakeClient):
            def fetch_page(self, block_id, cursor=None):
                if cursor:
                    raise ApiError("internal_server_error", "boom", 500)
                return super().fetch_page(block_id, cursor)

        tree = {root: [[raw_block(2)], [raw_block(3)]]}
        with pytest.raises(ApiError):
            TreeFetcher(SecondPageFails(tree)).fetch_children(root)

    @responses.activate
    def test_not_found_from_the_api(self, client):
        responses.add(
            responses.GET,
            f"{API}/blocks/{uid(1)}/children",
            status=404,
            json={"object": "error", "status": 404, "code": "object_not_found", "message": "Could not find block."},
        )

        with pytest.raises(ApiError) as exc:
            TreeFetcher(client).fetch_children(nid(1))

        assert exc.value.code == "object_not_found"


class TestDatabase:
    def test_pages_are_returned_in_query_order_with_bodies(self):
        db = nid(500)
        database = [[raw_page(10, "First"), raw_page(11, "Second")], [raw_page(12, "Third")]]
        tree = {
            nid(10): [[raw_block(100), raw_block(101, has_children=True)]],
            nid(101): [[raw_block(1010)]],
            nid(12): [[raw_block(120)]],
        }
        client = FakeClient(tree, delay=random_delay(0.003), database=database)

        pages = TreeFetcher(client).fetch_database(db)

        assert [page.title for page in pages] == ["First", "Second", "Third"]
        assert [c.id for c in pages[0].children] == [nid(100), nid(101)]
        assert [c.id for c in pages[0].children[1].children] == [nid(1010)]
        assert pages[1].children == []
        assert [c.id for c in pages[2].children] == [nid(120)]
