"""Tests for threads and posts."""
import pytest

import content_service
import gateway
import identity_service
from errors import NotFoundError


@pytest.fixture
def author(db):
    return identity_service.register('writer', 'pw')


class TestThreads:
    def test_create_and_get(self, db, author):
        thread_id = content_service.create_thread(author, 'Hello', 'First post!')
        thread = content_service.get_thread(thread_id)
        assert thread['title'] == 'Hello'
        assert thread['content'] == 'First post!'
        assert thread['author_username'] == 'writer'
        assert not thread['author_verified']

    def test_get_missing(self, db):
        assert content_service.get_thread(12345) is None

    def test_list_newest_first(self, db, author):
        first = content_service.create_thread(author, 'one', '')
        second = content_service.create_thread(author, 'two', '')
        third = content_service.create_thread(author, 'three', '')
        ids = [t['id'] for t in content_service.list_threads()]
        assert ids == [third, second, first]

    def test_list_includes_reply_count(self, db, author):
        thread_id = content_service.create_thread(author, 't', 'c')
        content_service.create_post(thread_id, author, 'r1')
        content_service.create_post(thread_id, author, 'r2')
        (thread,) = content_service.list_threads()
        assert thread['post_count'] == 2

    def test_empty_title_accepted(self, db, author):
        thread_id = content_service.create_thread(author, '', '')
        assert content_service.get_thread(thread_id)['title'] == ''

    def test_deleted_author_leaves_thread(self, db, author):
        thread_id = content_service.create_thread(author, 'orphan', 'still here')
        gateway.mutate('DELETE FROM users WHERE id = :id', {'id': author})
        thread = content_service.get_thread(thread_id)
        assert thread['author_id'] is None
        assert thread['author_username'] is None
        assert [t['id'] for t in content_service.list_threads()] == [thread_id]


class TestPosts:
    def test_posts_oldest_first(self, db, author):
        thread_id = content_service.create_thread(author, 't', 'c')
        other = identity_service.register('reader', 'pw')
        ids = [
            content_service.create_post(thread_id, author, 'a'),
            content_service.create_post(thread_id, other, 'b'),
            content_service.create_post(thread_id, author, 'c'),
        ]
        posts = content_service.list_posts(thread_id)
        assert [p['id'] for p in posts] == ids
        assert [p['content'] for p in posts] == ['a', 'b', 'c']
        assert posts[1]['author_username'] == 'reader'

    def test_posts_scoped_to_thread(self, db, author):
        t1 = content_service.create_thread(author, 't1', '')
        t2 = content_service.create_thread(author, 't2', '')
        content_service.create_post(t1, author, 'in t1')
        assert content_service.list_posts(t2) == []

    def test_reply_to_missing_thread(self, db, author):
        with pytest.raises(NotFoundError):
            content_service.create_post(999, author, 'lost')
        assert gateway.fetch_many('SELECT id FROM posts') == []

    def test_thread_deletion_cascades(self, db, author):
        thread_id = content_service.create_thread(author, 't', '')
        content_service.create_post(thread_id, author, 'reply')
        gateway.mutate('DELETE FROM threads WHERE id = :id', {'id': thread_id})
        assert content_service.list_posts(thread_id) == []
