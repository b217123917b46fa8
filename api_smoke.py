"""
Smoke test script for a running Arovia API.
Start the server (USE_MOCK_LLM=true works without an API key), then run
this script to walk through every endpoint.

Usage: python api_smoke.py [base_url]
"""

import json
import sys
from typing import Any

import requests

BASE_URL = sys.argv[1] if len(sys.argv) > 1 else "http://127.0.0.1:8000"
USER_ID = "smoke-user"


def print_header(title: str) -> None:
    """Print a formatted header."""
    print("\n" + "=" * 60)
    print(f"  {title}")
    print("=" * 60)


def print_result(name: str, success: bool, response: Any = None) -> None:
    """Print check result."""
    status = "✓ PASS" if success else "✗ FAIL"
    print(f"\n{status} - {name}")
    if response:
        if isinstance(response, (dict, list)):
            print(json.dumps(response, indent=2, default=str)[:500])
        else:
            print(str(response)[:500])


def check_root() -> bool:
    """Check 1: Liveness endpoint."""
    try:
        response = requests.get(f"{BASE_URL}/")
        success = response.status_code == 200
        print_result("Root", success, response.json())
        return success
    except requests.RequestException as e:
        print_result("Root", False, str(e))
        return False


def check_login() -> dict | None:
    """Check 2: Log in (registers the user on first login)."""
    try:
        response = requests.post(
            f"{BASE_URL}/api/auth/login",
            json={"username": "smoke", "password": "smoke-password"},
        )
        success = response.status_code == 200
        print_result("Login", success, response.json())
        if not success:
            return None
        return {"Authorization": f"Bearer {response.json()['token']}"}
    except requests.RequestException as e:
        print_result("Login", False, str(e))
        return None


def check_upload_records(headers: dict) -> bool:
    """Check 3: Upload a couple of health records."""
    uploads = [
        {
            "name": "ABHA record",
            "data": {
                "user_id": USER_ID,
                "source": "abha",
                "payload": {
                    "name": "Test Patient",
                    "abha_id": "12-3456-7890-1234",
                    "bmi": 31.5,
                    "labs": {"hba1c": 6.1, "ldl": 142},
                },
            },
        },
        {
            "name": "App record",
            "data": {
                "user_id": USER_ID,
                "source": "app",
                "payload": {"exercise_minutes_per_week": 60, "notes": "Sleeps 6h on average."},
            },
        },
    ]

    all_ok = True
    for upload in uploads:
        try:
            response = requests.post(f"{BASE_URL}/api/health", json=upload["data"], headers=headers)
            success = response.status_code == 200
            print_result(upload["name"], success, response.json())
            all_ok = all_ok and success
        except requests.RequestException as e:
            print_result(upload["name"], False, str(e))
            all_ok = False
    return all_ok


def check_list_records(headers: dict) -> list | None:
    """Check 4: List records newest first."""
    try:
        response = requests.get(f"{BASE_URL}/api/health/{USER_ID}", headers=headers)
        success = response.status_code == 200
        print_result("List Records", success, response.json())
        return response.json() if success else None
    except requests.RequestException as e:
        print_result("List Records", False, str(e))
        return None


def check_analyze(headers: dict) -> dict | None:
    """Check 5: Analyze recent records with a proposed lifestyle."""
    try:
        response = requests.post(
            f"{BASE_URL}/api/analyze",
            json={
                "user_id": USER_ID,
                "lifestyle": {"smoker": True, "alcohol_units_per_week": 20},
                "consent_id": "smoke-consent",
            },
            headers=headers,
            timeout=120,
        )
        success = response.status_code == 200
        print_result("Analyze", success, response.json())
        return response.json() if success else None
    except requests.RequestException as e:
        print_result("Analyze", False, str(e))
        return None


def check_batch_analyze(headers: dict) -> dict | None:
    """Check 6: Batch analyze several lifestyles."""
    lifestyles = [
        {"smoker": True},
        {"sedentary": True, "high_sugar_diet": True},
        {"exercise_minutes_per_week": 300},
    ]
    try:
        response = requests.post(
            f"{BASE_URL}/api/analyze/batch",
            json={"requests": [{"user_id": USER_ID, "lifestyle": lifestyle} for lifestyle in lifestyles]},
            headers=headers,
            timeout=300,
        )
        success = response.status_code == 200
        result = response.json()
        if success:
            print_result("Batch Analyze", success, {
                "processed": result["processed"],
                "failed": result["failed"],
                "groups": result["groups"],
                "total_time_seconds": result["total_time_seconds"],
            })
        else:
            print_result("Batch Analyze", success, result)
        return result if success else None
    except requests.RequestException as e:
        print_result("Batch Analyze", False, str(e))
        return None


def check_prevention(headers: dict) -> bool:
    """Check 7: Latest stored analysis."""
    try:
        response = requests.get(f"{BASE_URL}/api/prevention/{USER_ID}", headers=headers)
        success = response.status_code == 200 and response.json()["analysis"] is not None
        print_result("Prevention Payload", success, response.json())
        return success
    except requests.RequestException as e:
        print_result("Prevention Payload", False, str(e))
        return False


def check_unauthorized() -> bool:
    """Check 8: Protected routes reject missing tokens."""
    try:
        response = requests.get(f"{BASE_URL}/api/health/{USER_ID}")
        success = response.status_code == 401
        print_result("Unauthorized Request", success, response.json())
        return success
    except requests.RequestException as e:
        print_result("Unauthorized Request", False, str(e))
        return False


def main():
    print("\n" + "=" * 60)
    print("  AROVIA API - SMOKE CHECKS")
    print("=" * 60)

    results = {"passed": 0, "failed": 0}

    def record(ok: bool) -> None:
        results["passed" if ok else "failed"] += 1

    print_header("CHECK 1: Root")
    record(check_root())

    print_header("CHECK 2: Login")
    headers = check_login()
    record(headers is not None)
    if headers is None:
        print("\n  Cannot continue without a token.")
        return

    print_header("CHECK 3: Upload Records")
    record(check_upload_records(headers))

    print_header("CHECK 4: List Records")
    record(check_list_records(headers) is not None)

    print_header("CHECK 5: Analyze")
    record(check_analyze(headers) is not None)

    print_header("CHECK 6: Batch Analyze")
    record(check_batch_analyze(headers) is not None)

    print_header("CHECK 7: Prevention Payload")
    record(check_prevention(headers))

    print_header("CHECK 8: Unauthorized Request")
    record(check_unauthorized())

    # Summary
    print("\n" + "=" * 60)
    print("  SUMMARY")
    print("=" * 60)
    print(f"\n  ✓ Passed: {results['passed']}")
    print(f"  ✗ Failed: {results['failed']}")
    print(f"  Total:   {results['passed'] + results['failed']}")
    print("\n" + "=" * 60)


if __name__ == "__main__":
    main()
