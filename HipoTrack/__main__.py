"""
Entry point for HipoTrack.
This module provides a command-line interface to the messaging core.
"""

import argparse
import asyncio

from HipoTrack.core.logging import auto_configure
from HipoTrack.start import cli


def parse():
    # Initialize argument parser for command line interface
    parser = argparse.ArgumentParser(prog='HipoTrack', description='HipoTrack messaging')
    parser.add_argument('--user-id', help='Viewer user id (default: $HIPOTRACK_USER_ID)')
    parser.add_argument('--user-name', help='Viewer display name (default: $HIPOTRACK_USER_NAME)')
    parser.add_argument('--user-role', help='Viewer role (default: $HIPOTRACK_USER_ROLE)')
    parser.add_argument('--env', choices=['development', 'production', 'testing'],
                        help='Logging preset (default: $HIPOTRACK_ENV)')
    subparsers = parser.add_subparsers(dest='command', required=True, help='Available commands')

    subparsers.add_parser('conversations', help='List conversations')

    messages_parser = subparsers.add_parser('messages', help='Show a conversation')
    messages_parser.add_argument('conversation_id', help='Conversation id')

    send_parser = subparsers.add_parser('send', help='Send a message')
    send_parser.add_argument('conversation_id', help='Conversation id')
    send_parser.add_argument('content', help='Message text')
    send_parser.add_argument('--topic', default=None, help='Message topic')
    send_parser.add_argument('--attach', nargs='*', default=[], metavar='FILE', help='Files to attach')

    watch_parser = subparsers.add_parser('watch', help='Follow new messages')
    watch_parser.add_argument('conversation_id', nargs='?', default=None,
                              help='Conversation id (default: most recent)')

    return parser.parse_args()


def main():
    args = parse()
    auto_configure(args.env)
    viewer = cli.viewer_from_args(args.user_id, args.user_name, args.user_role)

    try:
        if args.command == 'conversations':
            asyncio.run(cli.conversations(viewer))
        elif args.command == 'messages':
            asyncio.run(cli.messages(viewer, args.conversation_id))
        elif args.command == 'send':
            if not asyncio.run(cli.send(viewer, args.conversation_id, args.content, args.topic, args.attach)):
                raise SystemExit(1)
        elif args.command == 'watch':
            asyncio.run(cli.watch(viewer, args.conversation_id))
        else:
            raise Exception('Unknown command')
    except KeyboardInterrupt:
        print("Bye!")


if __name__ == '__main__':
    main()
