from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

# Bounds every entitlement read; expiry surfaces as a retryable 503
MONGO_TIMEOUT_MS = int(os.environ.get('MONGO_TIMEOUT_MS', '5000'))


def _client(mongo_url: str) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(mongo_url, serverSelectionTimeoutMS=MONGO_TIMEOUT_MS)


class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            self.client = _client(mongo_url)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def _create_indexes(self):
        """Create the indexes the entitlement lookups and usage counts rely on."""
        try:
            # Company lookups by id on every gated request
            try:
                await self.db.companies.create_index("id", unique=True)
            except PyMongoError:
                pass  # Index may already exist with different options

            # Profiles: actor lookup and live team-member counts
            await self.db.profiles.create_index("id", unique=True)
            await self.db.profiles.create_index("company_id")

            # Live usage counts
            await self.db.properties.create_index("company_id")
            await self.db.properties.create_index("property_id", unique=True)
            await self.db.social_accounts.create_index("company_id")
            await self.db.social_accounts.create_index("account_id", unique=True)
            await self.db.team_invitations.create_index([("company_id", 1), ("email", 1)])

            # Audit log indexes - for timeline queries
            await self.db.audit_logs.create_index([("company_id", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index([("action", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index("timestamp")
            logger.info("MongoDB indexes created/verified")
        except PyMongoError as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")


# Global database instance
database = Database()
