"""
Initialize database and create tables
Run this script once to set up a local database; use `flask db upgrade`
for databases managed by migrations.
"""

from app import create_app
from extensions import db

def init_db():
    """Initialize the database"""
    app = create_app('development')

    with app.app_context():
        print("Creating database tables...")
        db.create_all()
        print("Database tables created.")
        print(f"Database location: {app.config['SQLALCHEMY_DATABASE_URI']}")

        print("\nTables:")
        for table in db.metadata.sorted_tables:
            print(f"  - {table.name}")

        print("\nNext steps:")
        print("  flask users create EMAIL USERNAME")
        print("  flask categories add EMAIL expense NAME")

if __name__ == '__main__':
    init_db()
