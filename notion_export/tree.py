"""
Concurrent, order-preserving retrieval of a Notion block tree.

Strategy: a worklist of single-page fetches run on a thread pool, driven by
one coordinator loop on the calling thread.

  - A unit of work is "fetch page N of parent X's children". Workers only do
    the HTTP call and decode the items into fresh Nodes; they never touch the
    tree.
  - The coordinator receives each finished page and appends its items to the
    parent's children list. It then schedules the parent's next page (if
    has_more) and the first page of every item flagged has_children.
  - A parent's next page is only scheduled after the previous one has been
    appended, so each children list fills up in exactly the order a
    one-request-at-a-time walk would produce. Completion order of different
    subtrees doesn't matter because each subtree writes only to its own list.

The first failure anywhere ends the walk: queued units are cancelled, running
ones are abandoned (their results are never read) and the exception
propagates to the caller. There is no cache. A block reachable from two
parents is fetched twice.
"""

import logging
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait

log = logging.getLogger("notion-export")

DEFAULT_WORKERS = 8


class TreeFetcher:
    def __init__(self, client, max_workers=DEFAULT_WORKERS):
        self.client = client
        self.max_workers = max_workers

    def fetch_children(self, block_id):
        """Return the fully resolved children of `block_id`, in server order, recursively."""
        return self._walk(self.client.fetch_page, block_id)

    def fetch_database(self, database_id):
        """
        Return every page of a database in query order, each with its block
        children resolved. Database pages decode with has_children=True, so
        they are expanded like any other parent.
        """
        return self._walk(self.client.query_database, database_id)

    def _walk(self, fetch, root_id):
        output = []
        pending = {}  # future -> (source function, parent id, list the page's items go into)
        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="tree-fetch")

        def schedule(source, parent_id, into, cursor=None):
            pending[pool.submit(source, parent_id, cursor)] = (source, parent_id, into)

        try:
            schedule(fetch, root_id, output)
            pages = 0
            while pending:
                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    source, parent_id, into = pending.pop(future)
                    page = future.result()  # re-raises the worker's exception
                    pages += 1

                    for node in page.results:
                        into.append(node)
                        if node.has_children:
                            schedule(self.client.fetch_page, node.id, node.children)

                    if page.has_more:
                        schedule(source, parent_id, into, page.next_cursor)
        except BaseException:
            # Don't wait for siblings that are still in flight; whatever they
            # return is dropped with the pool
            pool.shutdown(wait=False, cancel_futures=True)
            raise

        pool.shutdown()
        log.info("Fetched %d pages of children under %s", pages, root_id)
        return output
