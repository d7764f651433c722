from __future__ import annotations

import argparse
import json
import logging
import os
import pathlib
import sys
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable

from reminderlink import config, helpers
from reminderlink.exceptions import ValidationFailure
from reminderlink.helpers import DateUtil
from reminderlink.reminders.model.reminder import Reminder, Priority
from reminderlink.reminders.store import COMPANION_KEY, PRIMARY_KEY, SQLiteStore
from reminderlink.sync.endpoint import COMPANION, PRIMARY, SyncEndpoint
from reminderlink.sync.scheduler import BackgroundRefresh
from reminderlink.transport.loopback import LoopbackLink


class ReminderLinkCli:
    """
    Defines the functionality of the ReminderLink CLI.
    """

    def __init__(self, args):
        self.args = args
        self.settings: dict = {}
        self.link: LoopbackLink | None = None
        if 'data_dir' in self.args:
            helpers.DATA_LOCATION = Path(self.args.data_dir)
        self.apply_settings()
        self.logger = self.setup_logging()
        self.logger.debug("Settings in use: {}".format(json.dumps(self.settings, indent=2)))

    def run(self) -> int:
        """
        Run the requested command.

        :return: the exit code.
        """
        commands = {
            'list': self.list_reminders,
            'add': self.add_reminder,
            'toggle': self.toggle_reminder,
            'delete': self.delete_reminder,
            'demo': self.demo,
        }
        return commands[self.args.command]()

    @staticmethod
    def __process_return(cb: Callable, error: str, code: int, *args) -> str:
        """
        Process the return value of one of the endpoint methods. If there is an error, this is logged and the CLI exits.

        :param cb: The endpoint function to run.
        :param error: The error message to display on failure.
        :param code: The exit code to use on error.

        :return: the success message.
        """
        success, data = cb(*args)
        if not success:
            logging.critical('{} {}'.format(error, data))
            sys.exit(code)
        return data

    def local_endpoint(self) -> SyncEndpoint:
        """
        Create an endpoint over the local store. No peer is available from the command line, so the endpoint runs in
        local-only mode.

        :return: the endpoint.
        """
        role = self.settings['role']
        store = SQLiteStore(PRIMARY_KEY if role == PRIMARY else COMPANION_KEY)
        self.link = LoopbackLink(supported=False)
        endpoint = SyncEndpoint(store, self.link.end(role), role, float(self.settings['request_timeout']))
        endpoint.activate()
        return endpoint

    def close_endpoint(self, endpoint: SyncEndpoint) -> None:
        endpoint.close()
        if self.link is not None:
            self.link.close()
            self.link = None

    def list_reminders(self) -> int:
        endpoint = self.local_endpoint()
        collection = endpoint.reminders()
        views = {
            'all': collection.by_due_date,
            'upcoming': collection.upcoming,
            'completed': collection.completed,
        }
        reminders = views[self.args.view]()
        if len(reminders) == 0:
            print('No reminders.')
        for reminder in reminders:
            print(ReminderLinkCli.format_reminder(reminder))
        self.close_endpoint(endpoint)
        return 0

    def add_reminder(self) -> int:
        due_date = None
        if self.args.due:
            due_date = DateUtil.convert(DateUtil.CLI_DATETIME, self.args.due)
            if due_date is False:
                logging.critical('Invalid due date {}. Use the format YYYY-MM-DD HH:MM.'.format(self.args.due))
                sys.exit(3)
        try:
            reminder = Reminder(title=self.args.title,
                                notes=self.args.notes,
                                due_date=due_date,
                                priority=Priority.parse(self.args.priority))
        except ValidationFailure as e:
            logging.critical('Invalid reminder: {}'.format(e))
            sys.exit(3)
        endpoint = self.local_endpoint()
        message = ReminderLinkCli.__process_return(endpoint.add, 'Failed to add reminder.', 4, reminder)
        logging.info(message)
        print(reminder.id)
        self.close_endpoint(endpoint)
        return 0

    def toggle_reminder(self) -> int:
        endpoint = self.local_endpoint()
        message = ReminderLinkCli.__process_return(endpoint.toggle_completed, 'Failed to toggle reminder.', 5,
                                                   self.args.id)
        logging.info(message)
        self.close_endpoint(endpoint)
        return 0

    def delete_reminder(self) -> int:
        endpoint = self.local_endpoint()
        message = ReminderLinkCli.__process_return(endpoint.delete, 'Failed to delete reminder.', 6, self.args.id)
        logging.info(message)
        self.close_endpoint(endpoint)
        return 0

    def demo(self) -> int:
        """
        Run a primary and a companion over a loopback link: the primary adds a reminder while the companion is out of
        reach, and the companion picks it up when it becomes reachable.
        """
        sync_log = []
        log_handler = helpers.FunctionHandler(sync_log.append)
        log_handler.setLevel(logging.INFO)
        log_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
        logging.getLogger().addHandler(log_handler)

        with tempfile.TemporaryDirectory() as tmp:
            db_path = Path(tmp) / 'demo.db'
            link = LoopbackLink(db_path=db_path, coalesce=self.settings['coalesce_transfers'])
            timeout = float(self.settings['request_timeout'])
            primary = SyncEndpoint(SQLiteStore(PRIMARY_KEY, db_path), link.end(PRIMARY), PRIMARY, timeout)
            companion = SyncEndpoint(SQLiteStore(COMPANION_KEY, db_path), link.end(COMPANION), COMPANION, timeout)
            refresher = BackgroundRefresh(companion, int(self.settings['refresh_minutes']),
                                          on_refresh=lambda c: print('Companion pending: {}'.format(c.pending_count())))
            refresher.start()

            logging.info('Activating both devices...')
            primary.activate()
            companion.activate()
            link.settle(primary, companion)

            logging.info('Adding a reminder on the primary while the companion is out of reach...')
            link.suspend_transfers()
            ReminderLinkCli.__process_return(primary.add, 'Failed to add reminder.', 4, Reminder(title='Buy milk'))
            link.settle(primary, companion)
            print('Companion before reconnect: {}'.format(companion.reminders().reminders))

            logging.info('Companion becomes reachable...')
            link.set_reachable(True)
            link.settle(primary, companion)
            link.resume_transfers()
            link.settle(primary, companion)
            print('Companion after reconnect: {}'.format(companion.reminders().reminders))

            first = companion.reminders().reminders[0]
            logging.info('Completing the reminder on the companion...')
            ReminderLinkCli.__process_return(companion.toggle_completed, 'Failed to toggle reminder.', 5, first.id)
            link.settle(primary, companion)
            print('Primary completed: {}'.format(primary.reminders().completed()))

            logging.info('Running a background refresh on the companion...')
            refresher.refresh()
            refresher.stop()
            print('Primary stats: {}'.format(json.dumps(primary.stats())))
            print('Companion stats: {}'.format(json.dumps(companion.stats())))

            primary.close()
            companion.close()
            link.close()

        logging.getLogger().removeHandler(log_handler)
        print('Sync log:')
        for line in sync_log:
            print('  {}'.format(line))
        return 0

    @staticmethod
    def format_reminder(reminder: Reminder) -> str:
        return '[{}] {} ({}, due {}) {}'.format(
            'x' if reminder.is_completed else ' ',
            reminder.title,
            reminder.priority.value,
            DateUtil.convert('', reminder.due_date.astimezone(), DateUtil.CLI_DATETIME),
            reminder.id)

    def apply_settings(self) -> None:
        """
        Load settings from the configuration file, This is normally conf.json in the data folder, but may be overridden
        with the --config option. Any configuration options specified via command-line options will override the values
        in the configuration file.
        """
        if 'config' in self.args:
            if os.path.exists(self.args.config):
                conf_file = self.args.config
                logging.info('Using custom config file: {}'.format(conf_file))
            else:
                logging.critical('Configuration file {} not found.'.format(self.args.config))
                sys.exit(2)
        else:
            config.bootstrap_settings()
            conf_file = helpers.settings_folder() / 'conf.json'
            logging.debug('Using default config file: {}'.format(conf_file))

        success, data = config.load_settings(conf_file)
        if not success:
            logging.critical(data)
            sys.exit(2)
        self.settings = data

        # Override settings from command line arguments
        vargs = vars(self.args)
        for key in self.settings.keys():
            if key in vargs:
                self.settings[key] = vargs[key]

    def setup_logging(self) -> logging.Logger:
        """
        Sets up the logging system.

        :return: the logging helper for the CLI.
        """

        if 'log_dir' in self.args:
            if os.access(self.args.log_dir, os.W_OK | os.X_OK):
                log_folder = self.args.log_dir
            else:
                print("Specified log directory {} is not accessible.".format(self.args.log_dir))
                sys.exit(1)
        else:
            log_folder = helpers.log_folder()

        log_file = datetime.now().strftime("ReminderLink_%Y%m%d-%H%M%S") + '.log'
        log_levels = {
            'debug': logging.DEBUG,
            'info': logging.INFO,
            'warning': logging.WARNING,
            'critical': logging.CRITICAL
        }
        log_level = log_levels[self.settings['log_level']]

        logging.basicConfig(
            level=log_level,
            format='%(asctime)s %(levelname)s: %(message)s',
        )
        # basicConfig does nothing if the root logger already has handlers
        logging.getLogger().setLevel(log_level)
        logging.getLogger().addHandler(logging.FileHandler(Path(log_folder) / log_file))
        return logging.getLogger()


def main(argv=None):
    """
    Defines arguments accepted by the CLI.
    """

    parser = argparse.ArgumentParser(
        prog="ReminderLink CLI",
        description="Keep the reminders of a primary and a companion device in sync.",
    )

    parser.add_argument(
        "--role",
        type=str,
        choices=[PRIMARY, COMPANION],
        default=argparse.SUPPRESS,
        help="the role of this device.")
    parser.add_argument(
        "--request-timeout",
        dest="request_timeout",
        type=float,
        default=argparse.SUPPRESS,
        help="seconds to wait for a reply from the peer device.")
    parser.add_argument(
        "--config",
        type=pathlib.Path,
        default=argparse.SUPPRESS,
        help="use to provide a path to a custom configuration file.")
    parser.add_argument(
        "--data-dir",
        type=pathlib.Path,
        default=argparse.SUPPRESS,
        help="specify a custom directory for reminders and settings.")
    parser.add_argument(
        "--log-dir",
        type=pathlib.Path,
        default=argparse.SUPPRESS,
        help="specify a custom directory to use for logging.")
    parser.add_argument(
        "--log-level",
        type=str,
        choices=['debug', 'info', 'critical', 'warning'],
        default=argparse.SUPPRESS,
        help="specify the logging level.")

    subparsers = parser.add_subparsers(dest='command', required=True)

    list_parser = subparsers.add_parser('list', help="list reminders.")
    list_parser.add_argument(
        "--view",
        type=str,
        choices=['all', 'upcoming', 'completed'],
        default='all',
        help="which reminders to list.")

    add_parser = subparsers.add_parser('add', help="add a reminder.")
    add_parser.add_argument("title", type=str, help="the title of the reminder.")
    add_parser.add_argument("--notes", type=str, default='', help="notes for the reminder.")
    add_parser.add_argument("--due", type=str, default=None, help="due date as YYYY-MM-DD HH:MM (UTC).")
    add_parser.add_argument(
        "--priority",
        type=str,
        choices=[p.name.lower() for p in Priority],
        default='medium',
        help="the priority of the reminder.")

    toggle_parser = subparsers.add_parser('toggle', help="mark a reminder completed, or not completed.")
    toggle_parser.add_argument("id", type=str, help="the id of the reminder.")

    delete_parser = subparsers.add_parser('delete', help="delete a reminder.")
    delete_parser.add_argument("id", type=str, help="the id of the reminder.")

    subparsers.add_parser('demo', help="synchronise a primary and a companion over a loopback link.")

    return ReminderLinkCli(parser.parse_args(argv)).run()


if __name__ == "__main__":
    sys.exit(main())
