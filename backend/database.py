from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None
    
    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            self.client = AsyncIOMotorClient(mongo_url)
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
        """Create MongoDB indexes for the ledger collections."""
        try:
            # Users - quota counters and tier live on the user document
            try:
                await self.db.users.create_index("user_id", unique=True)
            except Exception:
                pass
            try:
                await self.db.users.create_index("email", unique=True, sparse=True)
            except Exception:
                pass
            await self.db.users.create_index("failed_login_attempts")
            
            # Reputation - one record per user
            try:
                await self.db.user_reputation.create_index("user_id", unique=True)
            except Exception:
                pass
            await self.db.user_reputation.create_index([("total_points", -1)])
            
            # Subscriptions - at most one ACTIVE per user
            await self.db.subscriptions.create_index("subscription_id", unique=True)
            await self.db.subscriptions.create_index([("user_id", 1), ("status", 1)])
            await self.db.subscriptions.create_index([("status", 1), ("current_period_end", 1)])
            try:
                await self.db.subscriptions.create_index(
                    "user_id",
                    unique=True,
                    partialFilterExpression={"status": "ACTIVE"},
                    name="one_active_subscription_per_user",
                )
            except Exception:
                pass  # Existing duplicates must be cleaned up first
            await self.db.credit_ledger.create_index([("user_id", 1), ("created_at", -1)])
            
            # Bookings
            await self.db.sessions.create_index([("user_id", 1), ("updated_at", -1)])
            await self.db.reports.create_index([("user_id", 1), ("updated_at", -1)])
            
            # Projects, assignments and evaluations
            await self.db.projects.create_index("project_id", unique=True)
            await self.db.projects.create_index([("user_id", 1), ("created_at", -1)])
            await self.db.projects.create_index("status")
            await self.db.project_assignments.create_index("assignment_id", unique=True)
            await self.db.project_assignments.create_index([("project_id", 1), ("status", 1)])
            await self.db.project_assignments.create_index([("expert_id", 1), ("status", 1)])
            try:
                await self.db.evaluations.create_index("assignment_id", unique=True)
            except Exception:
                pass
            await self.db.evaluations.create_index("project_id")
            await self.db.reward_distributions.create_index("project_id", unique=True)
            
            # Expert applications
            await self.db.expert_applications.create_index("expert_id", unique=True)
            await self.db.expert_applications.create_index("user_id")
            await self.db.expert_applications.create_index([("verification_status", 1), ("created_at", -1)])
            
            # Notifications
            await self.db.notification_logs.create_index([("created_at", -1)])
            await self.db.notification_logs.create_index([("user_id", 1), ("notification_type", 1), ("created_at", -1)])
            await self.db.dashboard_notification_reads.create_index("user_id", unique=True)
            await self.db.redeemed_drafts.create_index("draft_id", unique=True)
            
            # Settings (tier thresholds)
            await self.db.platform_settings.create_index("key", unique=True)
            
            # Audit log indexes - for timeline queries
            await self.db.audit_logs.create_index([("resource_type", 1), ("resource_id", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index([("user_id", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index([("action", 1), ("timestamp", -1)])
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()
