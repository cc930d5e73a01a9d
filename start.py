#!/usr/bin/env python3
"""
Startup script for the Social Assistance Allocation Service
"""
import subprocess
import sys
from pathlib import Path

MONGO_CONTAINER = "assistance-mongo"


def create_env_file():
    """Create .env file if it doesn't exist"""
    env_path = Path(".env")
    if not env_path.exists():
        print("📝 Creating .env file...")

        env_content = """# MongoDB Configuration
MONGODB_URL=mongodb://localhost:27017
MONGODB_DB_NAME=assistance_db

# Application Configuration
APP_NAME=Social Assistance Allocation Service
APP_VERSION=1.0.0
DEBUG=true
LOG_LEVEL=INFO

# API Configuration
API_PREFIX=/api/v1
CORS_ORIGINS=http://localhost:3000,http://localhost:8080

# Allocation Configuration
ALLOCATION_MAX_RETRIES=5
ALLOCATION_RETRY_BACKOFF_MS=20
RESERVATION_STALE_AFTER_SECONDS=300

# Notifications (leave empty to only log lifecycle events)
NOTIFICATION_WEBHOOK_URL=
NOTIFICATION_TIMEOUT_SECONDS=5
"""

        with open(env_path, 'w') as f:
            f.write(env_content)

        print("✅ .env file created successfully!")
    else:
        print("✅ .env file already exists")


def check_dependencies():
    """Check if required dependencies are installed"""
    print("🔍 Checking dependencies...")

    try:
        import fastapi
        import uvicorn
        import motor
        import pydantic_settings
        import httpx
        print("✅ All Python dependencies are installed")
        return True
    except ImportError as e:
        print(f"❌ Missing dependency: {e}")
        print("📦 Please install dependencies using: pip install -e .[test]")
        return False


def start_mongodb():
    """Start a MongoDB container"""
    print("🐳 Starting MongoDB...")

    try:
        result = subprocess.run(['docker', '--version'], capture_output=True, text=True)
        if result.returncode != 0:
            print("❌ Docker is not running. Please start Docker first.")
            return False

        result = subprocess.run(['docker', 'start', MONGO_CONTAINER], capture_output=True, text=True)
        if result.returncode != 0:
            result = subprocess.run(
                ['docker', 'run', '-d', '--name', MONGO_CONTAINER, '-p', '27017:27017', 'mongo:7'],
                capture_output=True,
                text=True
            )

        if result.returncode == 0:
            print("✅ MongoDB started successfully")
            return True
        else:
            print(f"❌ Failed to start MongoDB: {result.stderr}")
            return False

    except FileNotFoundError:
        print("❌ Docker not found. Please install Docker or point MONGODB_URL at a running server.")
        return False


def run_tests():
    """Run the test suite"""
    print("🧪 Running tests...")

    try:
        result = subprocess.run([sys.executable, '-m', 'pytest', '-q'], capture_output=True, text=True)
        if result.returncode == 0:
            print("✅ Tests passed successfully")
            return True
        else:
            print(f"❌ Tests failed:\n{result.stdout[-2000:]}")
            return False
    except Exception as e:
        print(f"❌ Failed to run tests: {e}")
        return False


def start_application():
    """Start the FastAPI application"""
    print("🚀 Starting the application...")

    try:
        subprocess.run([
            sys.executable, '-m', 'uvicorn',
            'assistance.main:app',
            '--host', '0.0.0.0',
            '--port', '8000',
            '--reload'
        ])
    except KeyboardInterrupt:
        print("\n👋 Application stopped by user")
    except Exception as e:
        print(f"❌ Failed to start application: {e}")


def main():
    """Main startup function"""
    print("🏛️  Social Assistance Allocation Service")
    print("=" * 50)

    if not Path("assistance").exists():
        print("❌ Please run this script from the repository root")
        sys.exit(1)

    create_env_file()

    if not check_dependencies():
        print("\n📦 Please install dependencies first:")
        print("   pip install -e .[test]")
        sys.exit(1)

    if not start_mongodb():
        print("\n⚠️  MongoDB startup failed. You can still run the application")
        print("   if MongoDB is running elsewhere.")

    if not run_tests():
        print("\n⚠️  Some tests failed. The application may not work correctly.")

    print("\n🎯 System is ready!")
    print("\n📚 Next steps:")
    print("1. Visit http://localhost:8000/docs for API documentation")
    print("2. Create a program with POST /api/v1/programs (X-Actor-Id header required)")
    print("3. Enroll recipients with POST /api/v1/programs/{id}/recipients")

    response = input("\n🚀 Start the application now? (y/n): ").lower().strip()
    if response in ['y', 'yes']:
        start_application()
    else:
        print("\n💡 To start the application later, run:")
        print("   uvicorn assistance.main:app --reload")


if __name__ == "__main__":
    main()
