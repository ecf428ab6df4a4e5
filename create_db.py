from schoolgrid import app, db, bootstrap_admin
from schoolgrid.models import School
import os

with app.app_context():
    db.create_all()
    school_code = os.environ.get('SCHOOL_CODE', 'MAIN')
    if not School.query.filter_by(code=school_code).first():
        db.session.add(School(name=os.environ.get('SCHOOL_NAME', 'Main Campus'), code=school_code))
        db.session.commit()
    admin_user = os.environ.get('ADMIN_USERNAME')
    if admin_user:
        bootstrap_admin(admin_user, os.environ.get('ADMIN_PASSWORD_HASH'), os.environ.get('ADMIN_PASSWORD'))
