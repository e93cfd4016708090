"""CLI script to import users from a CSV file into the backend DB.
Usage: python scripts/import_users.py users.csv [--database-url URL]

The CSV needs `email` and `password` columns; `role`, `firstName` and
`lastName` are optional. Rows go through the same bulk-create path as
`POST /api/v1/users/bulk`, so existing emails are reported, not overwritten.
"""
import sys
import csv
import argparse
import pathlib
from typing import Optional
# Ensure `backend/` is on sys.path so `lms` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from pydantic import ValidationError
from lms.config import Settings
from lms.database import Database
from lms.errors import AppError
from lms.schemas import BulkCreateResult, UserCreate
from lms.services import UserService


def read_rows(path: pathlib.Path):
    """Yield `UserCreate` payloads from the CSV, printing rows that fail validation."""
    with path.open(newline='', encoding='utf-8') as fh:
        for line_no, row in enumerate(csv.DictReader(fh), start=2):
            data = {k: v for k, v in row.items() if k and v}
            try:
                yield UserCreate.model_validate(data)
            except ValidationError as e:
                print(f'Skipping line {line_no}: {e.error_count()} validation error(s)')


def main(csv_path: pathlib.Path, database_url: Optional[str] = None) -> Optional[BulkCreateResult]:
    settings = Settings(DATABASE_URL=database_url) if database_url else Settings()
    payloads = list(read_rows(csv_path))
    if not payloads:
        print('No valid rows found to import')
        return None
    db = Database(settings.DATABASE_URL)
    db.create_all()
    try:
        result = UserService(db).create_bulk(payloads)
    except AppError as e:
        print(f'Import rejected: {e.message}')
        return None
    finally:
        db.dispose()
    for failure in result.failed:
        print(f'Failed {failure.user.email}: {failure.error}')
    print(f'Total created users: {result.total_success}, failed {result.total_failed}')
    return result


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('csv_path', type=pathlib.Path, help='CSV file with email,password[,role,firstName,lastName]')
    parser.add_argument('--database-url', help='Override DATABASE_URL')
    args = parser.parse_args()
    main(args.csv_path, database_url=args.database_url)
