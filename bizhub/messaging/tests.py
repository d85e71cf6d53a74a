"""
Tests for conversations, messages, presence and the Socket.IO handlers
"""
from unittest.mock import AsyncMock, Mock, patch
from asgiref.sync import async_to_sync
from django.core.cache import cache
from django.test import TestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework_simplejwt.tokens import RefreshToken
from socketio.exceptions import ConnectionRefusedError
from bizhub.core.models import SUPER_ADMIN, COMPANY_ADMIN, EMPLOYEE
from bizhub.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from bizhub.messaging import presence
from bizhub.messaging.broadcast import close_room, remove_from_room
from bizhub.messaging.models import Conversation, ConversationParticipant, Message
from bizhub.messaging.realtime import ChatNamespace, MessagingNamespace, sio
from bizhub.messaging.services import ConversationAccessError, find_direct_conversation, post_message


class ConversationAPITests(TestCase):
    """Test conversation endpoints"""

    def setUp(self):
        self.company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(role=EMPLOYEE, company=self.company, name='Alice')
        self.bob = TestDataFactory.create_user(role=EMPLOYEE, company=self.company, name='Bob')
        self.carol = TestDataFactory.create_user(role=EMPLOYEE, company=self.company, name='Carol')
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

        patcher = patch('bizhub.messaging.views.publish')
        self.publish = patcher.start()
        self.addCleanup(patcher.stop)
        patcher = patch('bizhub.messaging.views.remove_from_room')
        self.remove_from_room = patcher.start()
        self.addCleanup(patcher.stop)
        patcher = patch('bizhub.messaging.views.close_room')
        self.close_room = patcher.start()
        self.addCleanup(patcher.stop)

    def test_create_group_conversation(self):
        """The creator joins automatically and others are notified"""
        response = self.client.post(reverse('conversation-list-create'), {
            'name': 'Launch',
            'participants': [self.bob.pk, self.carol.pk],
            'initial_message': 'Kick-off tomorrow',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        member_ids = {row['user']['id'] for row in response.data['participants']}
        self.assertEqual(member_ids, {self.user.pk, self.bob.pk, self.carol.pk})
        self.assertEqual(response.data['company_id'], self.company.pk)
        self.assertEqual(response.data['last_message']['content'], 'Kick-off tomorrow')
        self.assertEqual(response.data['unread_count'], 0)

        rooms = {call.kwargs['room'] for call in self.publish.call_args_list}
        self.assertEqual(rooms, {f'user:{self.bob.pk}', f'user:{self.carol.pk}'})

    def test_create_requires_company(self):
        """Users without a company cannot start conversations"""
        loner = TestDataFactory.create_user()
        self.client.authenticate_user(loner)
        response = self.client.post(reverse('conversation-list-create'), {
            'participants': [self.bob.pk],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_company_admin_other_company(self):
        """Company admins cannot create conversations for another company"""
        admin = TestDataFactory.create_user(role=COMPANY_ADMIN, company=self.company)
        self.client.authenticate_user(admin)
        response = self.client.post(reverse('conversation-list-create'), {
            'participants': [self.bob.pk],
            'company_id': TestDataFactory.create_company().pk,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_unknown_participant(self):
        """Missing users are reported by id"""
        response = self.client.post(reverse('conversation-list-create'), {
            'participants': [self.bob.pk, 999999],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['missing_ids'], [999999])

    def test_participants_of_other_company(self):
        """Users of another company cannot be pulled into a conversation"""
        outsider = TestDataFactory.create_user(company=TestDataFactory.create_company())
        response = self.client.post(reverse('conversation-list-create'), {
            'participants': [self.bob.pk, outsider.pk],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['missing_ids'], [outsider.pk])
        self.assertFalse(Conversation.objects.exists())

        conversation = TestDataFactory.create_conversation([self.user, self.bob], company=self.company)
        response = self.client.patch(reverse('conversation-detail', args=[conversation.pk]), {
            'add_participants': [outsider.pk],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertFalse(ConversationParticipant.objects.filter(user=outsider).exists())

    def test_super_admin_mixes_companies(self):
        """Super admins may gather users of several companies"""
        outsider = TestDataFactory.create_user(company=TestDataFactory.create_company())
        self.client.authenticate_user(TestDataFactory.create_user(role=SUPER_ADMIN))
        response = self.client.post(reverse('conversation-list-create'), {
            'participants': [self.bob.pk, outsider.pk],
            'company_id': self.company.pk,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_super_admin_unknown_company(self):
        """A company that does not exist is a 404"""
        self.client.authenticate_user(TestDataFactory.create_user(role=SUPER_ADMIN))
        response = self.client.post(reverse('conversation-list-create'), {
            'participants': [self.bob.pk],
            'company_id': 987654,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'Company not found')
        self.assertFalse(Conversation.objects.exists())

    def test_direct_conversation_is_reused(self):
        """Starting a second direct conversation with the same user returns the first"""
        first = self.client.post(reverse('conversation-list-create'), {
            'is_direct_message': True,
            'participants': [self.bob.pk],
        }, format='json')
        self.assertEqual(first.status_code, status.HTTP_201_CREATED)
        self.assertEqual(first.data['name'], 'Bob')

        second = self.client.post(reverse('conversation-list-create'), {
            'is_direct_message': True,
            'participants': [self.bob.pk],
        }, format='json')
        self.assertEqual(second.status_code, status.HTTP_200_OK)
        self.assertEqual(second.data['conversation']['id'], first.data['id'])
        self.assertEqual(Conversation.objects.filter(is_direct_message=True).count(), 1)

    def test_direct_needs_two_participants(self):
        """Direct conversations hold exactly two users"""
        response = self.client.post(reverse('conversation-list-create'), {
            'is_direct_message': True,
            'participants': [self.bob.pk, self.carol.pk],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_list_with_unread_counts(self):
        """The list only shows the user's conversations with their unread counts"""
        mine = TestDataFactory.create_conversation([self.user, self.bob], company=self.company)
        TestDataFactory.create_conversation([self.bob, self.carol], company=self.company)
        TestDataFactory.create_message(mine, self.bob)
        TestDataFactory.create_message(mine, self.bob)
        TestDataFactory.create_message(mine, self.user)

        response = self.client.get(reverse('conversation-list-create'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['unread_count'], 2)

        response = self.client.get(reverse('conversation-list-create'), {'only_unread': 'true'})
        self.assertEqual(response.data['count'], 1)

    def test_list_filters(self):
        """Conversations filter by partner, kind and search text"""
        direct = TestDataFactory.create_conversation([self.user, self.bob], company=self.company, is_direct=True)
        group = TestDataFactory.create_conversation([self.user, self.carol], company=self.company, name='Roadmap')
        TestDataFactory.create_message(group, self.carol, content='Quarterly planning')

        response = self.client.get(reverse('conversation-list-create'), {'with_user_id': self.bob.pk})
        self.assertEqual([row['id'] for row in response.data['results']], [direct.pk])
        response = self.client.get(reverse('conversation-list-create'), {'only_direct': 'true'})
        self.assertEqual([row['id'] for row in response.data['results']], [direct.pk])
        response = self.client.get(reverse('conversation-list-create'), {'search': 'quarterly'})
        self.assertEqual([row['id'] for row in response.data['results']], [group.pk])

    def test_detail_marks_read(self):
        """Opening a conversation returns its messages newest first and marks it read"""
        conversation = TestDataFactory.create_conversation([self.user, self.bob], company=self.company)
        TestDataFactory.create_message(conversation, self.bob, content='first')
        TestDataFactory.create_message(conversation, self.bob, content='second')

        response = self.client.get(reverse('conversation-detail', args=[conversation.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([row['content'] for row in response.data['messages']['results']], ['second', 'first'])
        self.assertEqual(response.data['unread_count'], 0)
        membership = ConversationParticipant.objects.get(conversation=conversation, user=self.user)
        self.assertIsNotNone(membership.last_read_at)

    def test_detail_refuses_non_participant(self):
        """Outsiders cannot read a conversation"""
        conversation = TestDataFactory.create_conversation([self.bob, self.carol], company=self.company)
        response = self.client.get(reverse('conversation-detail', args=[conversation.pk]))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_super_admin_reads_any_conversation(self):
        """Super admins read conversations they are not part of"""
        conversation = TestDataFactory.create_conversation([self.bob, self.carol], company=self.company)
        self.client.authenticate_user(TestDataFactory.create_user(role=SUPER_ADMIN))
        response = self.client.get(reverse('conversation-detail', args=[conversation.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_missing_conversation(self):
        """Unknown conversations are a 404"""
        response = self.client.get(reverse('conversation-detail', args=[999999]))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_add_and_remove_participants(self):
        """Membership changes leave system messages behind"""
        conversation = TestDataFactory.create_conversation([self.user, self.bob], company=self.company)
        response = self.client.patch(reverse('conversation-detail', args=[conversation.pk]), {
            'add_participants': [self.carol.pk],
            'remove_participants': [self.bob.pk],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        member_ids = set(conversation.memberships.values_list('user_id', flat=True))
        self.assertEqual(member_ids, {self.user.pk, self.carol.pk})
        contents = set(Message.objects.filter(conversation=conversation, is_system_message=True)
                       .values_list('content', flat=True))
        self.assertEqual(contents, {
            'Alice added 1 participant(s) to the conversation',
            'Alice removed 1 participant(s) from the conversation',
        })
        room = f'conversation:{conversation.pk}'
        self.remove_from_room.assert_called_once_with([self.bob.pk], room)
        rooms = {call.kwargs['room'] for call in self.publish.call_args_list}
        self.assertEqual(rooms, {room, f'user:{self.bob.pk}'})
        for call in self.publish.call_args_list:
            self.assertEqual(call.args[0], 'conversationUpdated')

    def test_direct_members_are_fixed(self):
        """Participants of a direct conversation cannot change"""
        conversation = TestDataFactory.create_conversation([self.user, self.bob], company=self.company, is_direct=True)
        response = self.client.patch(reverse('conversation-detail', args=[conversation.pk]), {
            'add_participants': [self.carol.pk],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_rename(self):
        """Conversations can be renamed"""
        conversation = TestDataFactory.create_conversation([self.user, self.bob], company=self.company)
        response = self.client.patch(reverse('conversation-detail', args=[conversation.pk]), {
            'name': 'Renamed',
        }, format='json')
        self.assertEqual(response.data['name'], 'Renamed')

    def test_leave_conversation(self):
        """A regular user deleting a group leaves it"""
        conversation = TestDataFactory.create_conversation([self.user, self.bob], company=self.company)
        response = self.client.delete(reverse('conversation-detail', args=[conversation.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['message'], 'You left the conversation')
        self.assertTrue(Conversation.objects.filter(pk=conversation.pk).exists())
        self.assertTrue(Message.objects.filter(conversation=conversation, content='Alice left the conversation').exists())
        self.remove_from_room.assert_called_once_with([self.user.pk], f'conversation:{conversation.pk}')

    def test_last_member_leaving_deletes(self):
        """The conversation disappears when its last member leaves"""
        conversation = TestDataFactory.create_conversation([self.user], company=self.company)
        self.client.delete(reverse('conversation-detail', args=[conversation.pk]))
        self.assertFalse(Conversation.objects.filter(pk=conversation.pk).exists())

    def test_company_admin_deletes_group(self):
        """Company admins delete group conversations of their company"""
        admin = TestDataFactory.create_user(role=COMPANY_ADMIN, company=self.company)
        conversation = TestDataFactory.create_conversation([admin, self.bob], company=self.company)
        self.client.authenticate_user(admin)
        conversation_id = conversation.pk
        response = self.client.delete(reverse('conversation-detail', args=[conversation_id]))
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Conversation.objects.filter(pk=conversation_id).exists())
        self.close_room.assert_called_once_with(f'conversation:{conversation_id}')


class MessageAPITests(TestCase):
    """Test message posting and read receipts"""

    def setUp(self):
        self.company = TestDataFactory.create_company()
        self.user = TestDataFactory.create_user(role=EMPLOYEE, company=self.company)
        self.bob = TestDataFactory.create_user(role=EMPLOYEE, company=self.company)
        self.conversation = TestDataFactory.create_conversation([self.user, self.bob], company=self.company)
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

        patcher = patch('bizhub.messaging.views.publish')
        self.publish = patcher.start()
        self.addCleanup(patcher.stop)

    def test_post_message(self):
        """Posting stores the message and pushes it to the room"""
        response = self.client.post(reverse('message-create'), {
            'conversation_id': self.conversation.pk,
            'content': 'Hello',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['sender']['id'], self.user.pk)
        self.publish.assert_called_once_with('newMessage', response.data,
                                             room=f'conversation:{self.conversation.pk}')

    def test_post_to_foreign_conversation(self):
        """Non participants cannot post"""
        other = TestDataFactory.create_conversation([self.bob], company=self.company)
        response = self.client.post(reverse('message-create'), {
            'conversation_id': other.pk,
            'content': 'Hello',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.publish.assert_not_called()

    def test_system_message_requires_admin(self):
        """Only admins post system messages"""
        response = self.client.post(reverse('message-create'), {
            'conversation_id': self.conversation.pk,
            'content': 'Maintenance tonight',
            'is_system_message': True,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_mark_read(self):
        """Marking read resets the unread count and notifies the room"""
        TestDataFactory.create_message(self.conversation, self.bob)
        response = self.client.post(reverse('conversation-mark-read', args=[self.conversation.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['user_id'], self.user.pk)
        self.assertEqual(self.publish.call_args.args[0], 'messageRead')

        response = self.client.get(reverse('conversation-list-create'))
        self.assertEqual(response.data['results'][0]['unread_count'], 0)

    def test_sending_updates_senders_read_marker(self):
        """A user's own message never counts as unread for them"""
        message = post_message(self.user, self.conversation.pk, 'Hi')
        membership = ConversationParticipant.objects.get(conversation=self.conversation, user=self.user)
        self.assertGreaterEqual(membership.last_read_at, message.created_at)


class ServiceTests(TestCase):
    """Test the conversation rules shared by REST and sockets"""

    def setUp(self):
        self.company = TestDataFactory.create_company()
        self.alice = TestDataFactory.create_user(company=self.company)
        self.bob = TestDataFactory.create_user(company=self.company)
        self.carol = TestDataFactory.create_user(company=self.company)

    def test_find_direct_conversation(self):
        """Only the two-member direct conversation matches"""
        TestDataFactory.create_conversation([self.alice, self.bob, self.carol], company=self.company, is_direct=True)
        TestDataFactory.create_conversation([self.alice, self.bob], company=self.company)
        self.assertIsNone(find_direct_conversation(self.alice.pk, self.bob.pk))

        direct = TestDataFactory.create_conversation([self.alice, self.bob], company=self.company, is_direct=True)
        self.assertEqual(find_direct_conversation(self.bob.pk, self.alice.pk), direct)

    def test_company_admin_outside_company(self):
        """Company admins are refused conversations of other companies"""
        other_company = TestDataFactory.create_company()
        admin = TestDataFactory.create_user(role=COMPANY_ADMIN, company=self.company)
        conversation = TestDataFactory.create_conversation([admin, self.bob], company=other_company)
        with self.assertRaises(ConversationAccessError) as raised:
            post_message(admin, conversation.pk, 'Hi')
        self.assertEqual(raised.exception.status_code, 403)


class PresenceTests(TestCase):
    """Test the cache backed presence counters"""

    def setUp(self):
        cache.clear()

    def test_first_and_last_socket(self):
        """Only the first connection and the last disconnection report a change"""
        self.assertTrue(presence.mark_online(1))
        self.assertFalse(presence.mark_online(1))
        self.assertTrue(presence.is_online(1))
        self.assertFalse(presence.mark_offline(1))
        self.assertTrue(presence.is_online(1))
        self.assertTrue(presence.mark_offline(1))
        self.assertFalse(presence.is_online(1))

    def test_offline_after_expiry(self):
        """A counter that expired still reports the user going offline"""
        self.assertTrue(presence.mark_offline(42))
        self.assertFalse(presence.is_online(42))

    def test_refresh_keeps_user_online(self):
        """Activity recreates an expired counter unless told not to"""
        presence.refresh(7, revive=False)
        self.assertFalse(presence.is_online(7))
        presence.refresh(7)
        self.assertTrue(presence.is_online(7))

        presence.mark_online(7)
        presence.refresh(7)
        self.assertFalse(presence.mark_offline(7))

    def test_socket_registry(self):
        """The sockets of a user are remembered per namespace"""
        presence.remember_socket(1, 'sid-a', '/')
        presence.remember_socket(1, 'sid-b', '/messaging')
        self.assertEqual(presence.user_sockets(1), {'sid-a': '/', 'sid-b': '/messaging'})
        presence.forget_socket(1, 'sid-a')
        presence.forget_socket(1, 'unknown')
        self.assertEqual(presence.user_sockets(1), {'sid-b': '/messaging'})
        presence.forget_socket(1, 'sid-b')
        self.assertEqual(presence.user_sockets(1), {})

    def test_online_users(self):
        """Flags are returned for every requested id"""
        presence.mark_online(1)
        self.assertEqual(presence.online_users([1, 2]), {1: True, 2: False})

    def test_presence_endpoint(self):
        """The endpoint lists company members with their flags"""
        company = TestDataFactory.create_company()
        user = TestDataFactory.create_user(company=company)
        colleague = TestDataFactory.create_user(company=company)
        TestDataFactory.create_user(company=TestDataFactory.create_company())
        presence.mark_online(colleague.pk)

        client = AuthenticatedAPIClient().authenticate_user(user)
        response = client.get(reverse('presence-list'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['results'], [
            {'user_id': user.pk, 'online': False},
            {'user_id': colleague.pk, 'online': True},
        ])

        response = client.get(reverse('presence-list'), {'user_ids': 'abc'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


def fake_server(session=None, rooms=()):
    """Stand-in for the AsyncServer a namespace is registered on"""
    server = Mock()
    server.emit = AsyncMock()
    server.enter_room = AsyncMock()
    server.leave_room = AsyncMock()
    server.save_session = AsyncMock()
    server.get_session = AsyncMock(return_value=session or {})
    server.rooms = Mock(return_value=list(rooms))
    return server


def emitted(call):
    """(event, data) of an emit call, data may be positional or a keyword"""
    data = call.args[1] if len(call.args) > 1 else call.kwargs.get('data')
    return call.args[0], data


class RealtimeHandlerTests(TestCase):
    """Test the Socket.IO namespace handlers against a fake server"""

    def setUp(self):
        cache.clear()
        self.company = TestDataFactory.create_company()
        self.alice = TestDataFactory.create_user(company=self.company, name='Alice')
        self.bob = TestDataFactory.create_user(company=self.company, name='Bob')
        self.conversation = TestDataFactory.create_conversation([self.alice, self.bob], company=self.company)
        self.room = f'conversation:{self.conversation.pk}'

    def session(self, user):
        return {'user_id': user.pk, 'company_id': user.company_id, 'role': user.role,
                'name': user.name, 'email': user.email}

    def namespace(self, cls, namespace, user=None, rooms=()):
        handler = cls(namespace)
        handler.server = fake_server(self.session(user) if user else None, rooms)
        return handler

    def test_connect_with_token(self):
        """A valid token joins the user and company rooms and announces presence"""
        handler = self.namespace(ChatNamespace, '/')
        token = str(RefreshToken.for_user(self.alice).access_token)
        async_to_sync(handler.on_connect)('sid1', {}, {'token': token})

        saved = handler.server.save_session.call_args.args[1]
        self.assertEqual(saved['user_id'], self.alice.pk)
        rooms = {call.args[1] for call in handler.server.enter_room.call_args_list}
        self.assertEqual(rooms, {f'user:{self.alice.pk}', f'company:{self.company.pk}'})
        event, payload = emitted(handler.server.emit.call_args)
        self.assertEqual((event, payload), ('presence', {'user_id': self.alice.pk, 'online': True}))
        self.assertTrue(presence.is_online(self.alice.pk))

    def test_connect_refused_without_credentials(self):
        """Anonymous sockets are refused"""
        handler = self.namespace(ChatNamespace, '/')
        with self.assertRaises(ConnectionRefusedError):
            async_to_sync(handler.on_connect)('sid1', {}, None)
        with self.assertRaises(ConnectionRefusedError):
            async_to_sync(handler.on_connect)('sid1', {}, {'token': 'not-a-token'})

    def test_messaging_namespace_skips_presence(self):
        """Presence is only tracked on the default namespace"""
        handler = self.namespace(MessagingNamespace, '/messaging')
        token = str(RefreshToken.for_user(self.alice).access_token)
        async_to_sync(handler.on_connect)('sid1', {}, {'token': token})
        handler.server.emit.assert_not_called()
        self.assertFalse(presence.is_online(self.alice.pk))

    def test_disconnect_announces_offline(self):
        """The last socket going away broadcasts offline"""
        presence.mark_online(self.alice.pk)
        handler = self.namespace(ChatNamespace, '/', user=self.alice)
        async_to_sync(handler.on_disconnect)('sid1')
        self.assertEqual(emitted(handler.server.emit.call_args)[1], {'user_id': self.alice.pk, 'online': False})

    def test_join_requires_participation(self):
        """Only participants join a conversation room"""
        carol = TestDataFactory.create_user(company=self.company)
        handler = self.namespace(ChatNamespace, '/', user=carol)
        result = async_to_sync(handler.on_joinConversation)('sid1', {'conversation_id': self.conversation.pk})
        self.assertFalse(result['ok'])
        handler.server.enter_room.assert_not_called()
        self.assertEqual(handler.server.emit.call_args.args[0], 'error')

        handler = self.namespace(ChatNamespace, '/', user=self.alice)
        result = async_to_sync(handler.on_joinConversation)('sid1', self.conversation.pk)
        self.assertEqual(result, {'ok': True})
        self.assertEqual(handler.server.enter_room.call_args.args[1], self.room)

    def test_send_message(self):
        """Messages are stored and sent to the room on both namespaces"""
        handler = self.namespace(MessagingNamespace, '/messaging', user=self.alice)
        result = async_to_sync(handler.on_sendMessage)('sid1', {
            'conversation_id': self.conversation.pk,
            'content': 'Hello over sockets',
        })
        self.assertEqual(result['content'], 'Hello over sockets')
        self.assertTrue(Message.objects.filter(conversation=self.conversation, sender=self.alice).exists())

        calls = handler.server.emit.call_args_list
        self.assertEqual({call.kwargs['namespace'] for call in calls}, {'/', '/messaging'})
        for call in calls:
            self.assertEqual(call.args[0], 'newMessage')
            self.assertEqual(call.kwargs['room'], self.room)
            expected_skip = 'sid1' if call.kwargs['namespace'] == '/messaging' else None
            self.assertEqual(call.kwargs['skip_sid'], expected_skip)

    def test_send_incomplete_message(self):
        """Missing content is refused"""
        handler = self.namespace(MessagingNamespace, '/messaging', user=self.alice)
        result = async_to_sync(handler.on_sendMessage)('sid1', {'conversation_id': self.conversation.pk})
        self.assertEqual(result, {'ok': False, 'error': 'Incomplete message data'})

    def test_send_to_foreign_conversation(self):
        """Non participants cannot send over sockets either"""
        carol = TestDataFactory.create_user(company=self.company)
        handler = self.namespace(MessagingNamespace, '/messaging', user=carol)
        result = async_to_sync(handler.on_sendMessage)('sid1', {
            'conversation_id': self.conversation.pk,
            'content': 'Hi',
        })
        self.assertFalse(result['ok'])
        self.assertFalse(Message.objects.exists())

    def test_typing_requires_participation(self):
        """Typing indicators only go out for current participants"""
        carol = TestDataFactory.create_user(company=self.company)
        handler = self.namespace(MessagingNamespace, '/messaging', user=carol, rooms=[self.room])
        async_to_sync(handler.on_typing)('sid1', {'conversation_id': self.conversation.pk, 'is_typing': True})
        self.assertEqual(handler.server.emit.call_count, 1)
        self.assertEqual(handler.server.emit.call_args.args[0], 'error')

        handler = self.namespace(MessagingNamespace, '/messaging', user=self.alice)
        async_to_sync(handler.on_typing)('sid1', {'conversation_id': self.conversation.pk, 'is_typing': True})
        event, payload = emitted(handler.server.emit.call_args)
        self.assertEqual(event, 'userTyping')
        self.assertEqual(handler.server.emit.call_args.kwargs['room'], self.room)
        self.assertEqual(payload['user']['name'], 'Alice')
        self.assertTrue(payload['is_typing'])

    def test_connect_remembers_socket(self):
        """Sockets are recorded on connect and forgotten on disconnect"""
        handler = self.namespace(MessagingNamespace, '/messaging')
        token = str(RefreshToken.for_user(self.alice).access_token)
        async_to_sync(handler.on_connect)('sid1', {}, {'token': token})
        self.assertEqual(presence.user_sockets(self.alice.pk), {'sid1': '/messaging'})

        handler.server.get_session = AsyncMock(return_value=self.session(self.alice))
        async_to_sync(handler.on_disconnect)('sid1')
        self.assertEqual(presence.user_sockets(self.alice.pk), {})

    def test_activity_keeps_presence(self):
        """Events on the default namespace revive an expired presence counter"""
        handler = self.namespace(ChatNamespace, '/', user=self.alice)
        async_to_sync(handler.on_markAsRead)('sid1', {'conversation_id': self.conversation.pk})
        self.assertTrue(presence.is_online(self.alice.pk))

        handler = self.namespace(MessagingNamespace, '/messaging', user=self.bob)
        async_to_sync(handler.on_markAsRead)('sid2', {'conversation_id': self.conversation.pk})
        self.assertFalse(presence.is_online(self.bob.pk))

    def test_mark_as_read(self):
        """Read receipts move the marker and reach the room"""
        TestDataFactory.create_message(self.conversation, self.bob)
        handler = self.namespace(ChatNamespace, '/', user=self.alice)
        before = timezone.now()
        result = async_to_sync(handler.on_markAsRead)('sid1', {'conversation_id': self.conversation.pk})
        self.assertEqual(result, {'ok': True})
        membership = ConversationParticipant.objects.get(conversation=self.conversation, user=self.alice)
        self.assertGreaterEqual(membership.last_read_at, before)
        self.assertEqual(handler.server.emit.call_args.args[0], 'messageRead')


@override_settings(SOCKETIO_MESSAGE_QUEUE='')
class RoomEvictionTests(TestCase):
    """Removed participants lose the sockets they hold in a conversation room"""

    def setUp(self):
        cache.clear()
        self.company = TestDataFactory.create_company()
        self.alice = TestDataFactory.create_user(company=self.company, name='Alice')
        self.bob = TestDataFactory.create_user(company=self.company, name='Bob')
        self.conversation = TestDataFactory.create_conversation([self.alice, self.bob], company=self.company)
        self.room = f'conversation:{self.conversation.pk}'

    def join(self, sid, user, namespace='/'):
        for room in (f'user:{user.pk}', self.room):
            sio.manager.basic_enter_room(sid, namespace, room, eio_sid=f'eio-{sid}')
            self.addCleanup(sio.manager.basic_close_room, room, namespace)

    def members(self, namespace='/'):
        return {sid for sid, _ in sio.manager.get_participants(namespace, self.room)}

    def test_removed_participant_leaves_room(self):
        """Removing a member over REST evicts their sockets, typing then fails"""
        self.join('sid-alice', self.alice)
        self.join('sid-bob', self.bob)
        self.join('sid-bob-2', self.bob, namespace='/messaging')

        client = AuthenticatedAPIClient().authenticate_user(self.alice)
        with patch('bizhub.messaging.views.publish'):
            response = client.patch(reverse('conversation-detail', args=[self.conversation.pk]), {
                'remove_participants': [self.bob.pk],
            }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(self.members(), {'sid-alice'})
        self.assertEqual(self.members('/messaging'), set())

        handler = MessagingNamespace('/messaging')
        handler.server = fake_server({'user_id': self.bob.pk, 'name': 'Bob', 'email': self.bob.email},
                                     rooms=[self.room])
        async_to_sync(handler.on_typing)('sid-bob-2', {'conversation_id': self.conversation.pk})
        self.assertEqual(handler.server.emit.call_args.args[0], 'error')

    def test_leaving_user_leaves_room(self):
        """Leaving a group evicts the user's own sockets"""
        self.join('sid-alice', self.alice)
        self.join('sid-bob', self.bob)
        client = AuthenticatedAPIClient().authenticate_user(self.bob)
        with patch('bizhub.messaging.views.publish'):
            response = client.delete(reverse('conversation-detail', args=[self.conversation.pk]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(self.members(), {'sid-alice'})

    def test_deleted_conversation_room_is_closed(self):
        """Deleting a conversation empties its room"""
        admin = TestDataFactory.create_user(role=COMPANY_ADMIN, company=self.company)
        ConversationParticipant.objects.create(conversation=self.conversation, user=admin)
        self.join('sid-alice', self.alice)
        self.join('sid-bob', self.bob, namespace='/messaging')
        client = AuthenticatedAPIClient().authenticate_user(admin)
        with patch('bizhub.messaging.views.publish'):
            response = client.delete(reverse('conversation-detail', args=[self.conversation.pk]))
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertEqual(self.members(), set())
        self.assertEqual(self.members('/messaging'), set())

    @override_settings(SOCKETIO_MESSAGE_QUEUE='redis://localhost:6379/0')
    def test_eviction_through_message_queue(self):
        """With a message queue the recorded sockets are told to leave through it"""
        presence.remember_socket(self.bob.pk, 'sid-b', '/messaging')
        manager = Mock()
        with patch('bizhub.messaging.broadcast._queue_manager', return_value=manager):
            remove_from_room([self.bob.pk], self.room)
            close_room(self.room)
        manager.leave_room.assert_called_once_with('sid-b', '/messaging', self.room)
        self.assertEqual({call.kwargs['namespace'] for call in manager.close_room.call_args_list},
                         {'/', '/messaging'})

    def test_eviction_failure_is_logged(self):
        """A broken socket layer never fails the caller"""
        with patch('bizhub.messaging.broadcast.sio') as server:
            server.manager.get_participants.side_effect = RuntimeError('down')
            server.close_room = AsyncMock(side_effect=RuntimeError('down'))
            with self.assertLogs('bizhub.realtime', level='ERROR'):
                remove_from_room([self.bob.pk], self.room)
                close_room(self.room)
