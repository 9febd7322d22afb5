#!/usr/bin/env python3

"""
Initialize the database schema and optionally seed a demo project.
"""

import argparse

from dotenv import load_dotenv

load_dotenv()

from pledgeflow.database.connection import create_database_manager
from pledgeflow.ingestion.database_operations import DatabaseOperations


def main():
    parser = argparse.ArgumentParser(description='Create pipeline tables')
    parser.add_argument('--backend', choices=['postgres', 'sqlite'], help='Override DATABASE_BACKEND')
    parser.add_argument('--demo-shop', help='Create a project for this shop after the schema')
    parser.add_argument('--demo-name', default='Demo Campaign', help='Name of the demo project')
    args = parser.parse_args()

    db = create_database_manager(args.backend)
    try:
        db.initialize_schema()
        print(f'Database initialized successfully ({db.backend})')

        if args.demo_shop:
            project_id = DatabaseOperations(db).create_project(args.demo_shop, args.demo_name)
            print(f'Created project {project_id} for {args.demo_shop}')
    finally:
        db.close()


if __name__ == '__main__':
    main()
