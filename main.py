#!/usr/bin/env python3
"""Main entry point for government portal submission automation"""

import asyncio
import os
import sys
import json
import argparse
from loguru import logger
from dotenv import load_dotenv

LOG_FORMAT = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"


def configure_logging(level: str = "INFO"):
    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)
    logger.add("logs/portal_json_{time}.log", rotation="1 day", retention="7 days", level="DEBUG", serialize=True)


# Configure logger
configure_logging()

# Load environment variables
load_dotenv()

from src.config import AutomationSettings
from src.errors import PortalError
from src.portals.credentials import EnvCredentialProvider
from src.storage.models import FormSubmission, FormTemplate, PortalSubmissionStatus, PortalType
from src.submission.pipeline import SubmissionPipeline, build_pipeline


def _print_json(payload):
    print(json.dumps(payload, indent=2, default=str))


async def _wait_for_runs(pipeline: SubmissionPipeline, wait_retries: bool):
    """Let background runs finish; scheduled retries stay persisted unless waited for"""
    await pipeline.scheduler.drain(prefix='submit:')
    if wait_retries:
        await pipeline.scheduler.drain()


async def cmd_submit(pipeline: SubmissionPipeline, args) -> int:
    submission = await pipeline.service.submit_form(args.form_submission_id, args.user)
    logger.info(f"[{submission.id}] Submission queued")
    await _wait_for_runs(pipeline, args.wait_retries)
    _print_json((await pipeline.service.get_submission_status(submission.id)).model_dump(mode='json'))
    return 0


async def cmd_run(pipeline: SubmissionPipeline, args) -> int:
    result = await pipeline.orchestrator.submit_form_to_portal(args.submission_id, args.user)
    _print_json(result.model_dump(mode='json'))
    await _wait_for_runs(pipeline, args.wait_retries)
    return 0 if result.success else 1


async def cmd_retry(pipeline: SubmissionPipeline, args) -> int:
    await pipeline.service.retry_submission(args.submission_id, args.user)
    await _wait_for_runs(pipeline, args.wait_retries)
    _print_json((await pipeline.service.get_submission_status(args.submission_id)).model_dump(mode='json'))
    return 0


async def cmd_status(pipeline: SubmissionPipeline, args) -> int:
    if args.submission_id:
        _print_json((await pipeline.service.get_submission_status(args.submission_id)).model_dump(mode='json'))
    elif args.form_submission_id:
        submission = await pipeline.service.get_status_for_form_submission(args.form_submission_id)
        _print_json(submission.model_dump(mode='json'))
    else:
        status = PortalSubmissionStatus(args.status) if args.status else None
        submissions = await pipeline.service.list_submissions(status)
        for submission in submissions:
            print(f"{submission.id}  {submission.portal_type.value:<20} {submission.status.value:<16} "
                  f"retries={submission.retry_count} {submission.error_message or ''}")
        logger.info(f"{len(submissions)} portal submissions")
    return 0


async def cmd_resume(pipeline: SubmissionPipeline, args) -> int:
    armed = await pipeline.retry_engine.resume_scheduled_retries()
    logger.info(f"Re-armed {armed} scheduled retries")
    if armed:
        await pipeline.scheduler.drain()
    return 0


async def cmd_forms_add(pipeline: SubmissionPipeline, args) -> int:
    with open(args.data, 'r', encoding='utf-8') as f:
        form_data = json.load(f)
    template = await pipeline.store.save_form_template(FormTemplate(name=args.template_name))
    form_submission = await pipeline.store.save_form_submission(
        FormSubmission(template_id=template.id, case_id=args.case_id, form_data=form_data)
    )
    _print_json({'template_id': template.id, 'form_submission_id': form_submission.id})
    return 0


async def cmd_mappings(pipeline: SubmissionPipeline, args) -> int:
    service = pipeline.service
    if args.mappings_command == 'list':
        for mapping in await service.get_field_mappings(PortalType(args.portal_type)):
            print(f"{mapping.id}  {mapping.form_field} -> {mapping.portal_field}")
    elif args.mappings_command == 'add':
        mapping = await service.create_field_mapping(
            PortalType(args.portal_type), args.form_field, args.portal_field, args.user
        )
        _print_json(mapping.model_dump(mode='json'))
    elif args.mappings_command == 'update':
        mapping = await service.update_field_mapping(args.mapping_id, args.portal_field, args.user)
        _print_json(mapping.model_dump(mode='json'))
    elif args.mappings_command == 'delete':
        await service.delete_field_mapping(args.mapping_id, args.user)
        logger.info(f"Deleted field mapping {args.mapping_id}")
    elif args.mappings_command == 'seed':
        created = await pipeline.store.seed_field_mappings(args.file or pipeline.settings.field_mappings_file)
        logger.info(f"Created {created} field mappings")
    return 0


COMMANDS = {
    'submit': cmd_submit,
    'run': cmd_run,
    'retry': cmd_retry,
    'status': cmd_status,
    'resume': cmd_resume,
    'forms': cmd_forms_add,
    'mappings': cmd_mappings,
}


def build_parser() -> argparse.ArgumentParser:
    portal_choices = [p.value for p in PortalType]

    parser = argparse.ArgumentParser(description='Government Portal Submission Automation')
    parser.add_argument('--user', default=os.getenv('PORTAL_USER_ID', 'cli'), help='User the actions are attributed to')
    parser.add_argument('--headless', action='store_true', help='Run browser in headless mode (no UI)')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode (save error screenshots, verbose logging)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    submit = subparsers.add_parser('submit', help='Submit a form submission to its portal')
    submit.add_argument('form_submission_id')
    submit.add_argument('--wait-retries', action='store_true', help='Stay up until scheduled retries have run')

    run = subparsers.add_parser('run', help='Run one attempt for an existing portal submission')
    run.add_argument('submission_id')
    run.add_argument('--wait-retries', action='store_true', help='Stay up until scheduled retries have run')

    retry = subparsers.add_parser('retry', help='Manually retry a FAILED or RETRYING submission')
    retry.add_argument('submission_id')
    retry.add_argument('--wait-retries', action='store_true', help='Stay up until scheduled retries have run')

    status = subparsers.add_parser('status', help='Show portal submission status')
    status.add_argument('--submission-id')
    status.add_argument('--form-submission-id')
    status.add_argument('--status', choices=[s.value for s in PortalSubmissionStatus], help='Filter the listing')

    subparsers.add_parser('resume', help='Re-arm persisted scheduled retries and run them')

    forms = subparsers.add_parser('forms', help='Register form data for submission')
    forms_sub = forms.add_subparsers(dest='forms_command', required=True)
    forms_add = forms_sub.add_parser('add')
    forms_add.add_argument('--template-name', required=True, help='e.g. "Immigration Residence Permit"')
    forms_add.add_argument('--data', required=True, help='JSON file with the form data')
    forms_add.add_argument('--case-id')

    mappings = subparsers.add_parser('mappings', help='Manage portal field mappings')
    mappings_sub = mappings.add_subparsers(dest='mappings_command', required=True)
    mappings_list = mappings_sub.add_parser('list')
    mappings_list.add_argument('portal_type', choices=portal_choices)
    mappings_add = mappings_sub.add_parser('add')
    mappings_add.add_argument('portal_type', choices=portal_choices)
    mappings_add.add_argument('form_field')
    mappings_add.add_argument('portal_field')
    mappings_update = mappings_sub.add_parser('update')
    mappings_update.add_argument('mapping_id')
    mappings_update.add_argument('portal_field')
    mappings_delete = mappings_sub.add_parser('delete')
    mappings_delete.add_argument('mapping_id')
    mappings_seed = mappings_sub.add_parser('seed')
    mappings_seed.add_argument('--file', help='YAML file (defaults to FIELD_MAPPINGS_FILE)')

    return parser


async def main():
    """Main entry point"""
    args = build_parser().parse_args()

    # Configure environment based on flags
    if args.headless:
        os.environ['HEADLESS'] = 'true'
        logger.info("Running in HEADLESS mode (no browser UI)")

    if args.debug:
        os.environ['DEBUG'] = 'true'
        configure_logging("DEBUG")
        logger.debug("DEBUG mode enabled (error screenshots will be saved, verbose logging active)")

    settings = AutomationSettings.from_env()
    if args.command in ('submit', 'run', 'retry', 'resume'):
        EnvCredentialProvider().report_availability()

    pipeline = build_pipeline(settings)
    try:
        return await COMMANDS[args.command](pipeline, args)
    except PortalError as e:
        logger.error(f"{type(e).__name__}: {e.message}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1
    finally:
        await pipeline.scheduler.shutdown()
        if pipeline.metrics.get_summary()['total_attempts']:
            pipeline.metrics.log_summary()


if __name__ == '__main__':
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
