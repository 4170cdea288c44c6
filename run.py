from __future__ import annotations
import os
from bookit import create_app

def main() -> None:
    flask_app = create_app()

    # list the booking API with the methods each rule accepts
    print("\n=== BOOKIT ROUTES ===")
    for rule in sorted(flask_app.url_map.iter_rules(), key=lambda r: r.rule):
        methods = ",".join(sorted(rule.methods - {"HEAD", "OPTIONS"}))
        print(f"{methods:<10} {rule.rule}")
    print(f"slot step: {flask_app.config['SLOT_STEP_MINUTES']} min, db: {flask_app.config['SQLALCHEMY_DATABASE_URI']}")
    print("=====================\n")

    debug_enabled = os.environ.get("FLASK_DEBUG", "0") in {"1", "true", "True"}
    flask_app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)), debug=debug_enabled)

if __name__ == "__main__":
    main()
