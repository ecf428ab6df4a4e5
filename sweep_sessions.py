"""Flip section active flags to match their session windows. Run from cron."""
from schoolgrid import app
from schoolgrid.clock import current_clock
from schoolgrid.sections import sweep_sessions

if __name__ == "__main__":
    with app.app_context():
        expired = sweep_sessions(current_clock(app).now())
    print(f"{expired} sections expired")
