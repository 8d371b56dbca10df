"""
Quick script to view deployment records
Run: python scripts/view_deployments.py [user_id]
"""
import asyncio
import sys

from deploytrack.config import settings
from deploytrack.database import Database, DeploymentRepository, DeploymentFilter


async def view_deployments(user_id=None, limit: int = 20):
    database = Database(settings.database_url)
    await database.open()
    print(f"🔌 Connected to {database.engine.url.render_as_string(hide_password=True)}\n")

    try:
        async with database.session() as session:
            repo = DeploymentRepository(session)
            filter = DeploymentFilter(user_id=user_id)

            counts = await repo.count_by_status(filter)
            print("📊 Deployments by status:")
            for status, count in counts.items():
                print(f"   {status.value:<10} {count}")

            print(f"\n🕒 Latest {limit} deployments:")
            shown = 0
            async for deployment in repo.list(filter, page_size=limit):
                completed = deployment.completed_at.isoformat() if deployment.completed_at else "-"
                print(
                    f"   {deployment.id}  user={deployment.user_id}  "
                    f"{deployment.repository}@{deployment.branch}  "
                    f"{deployment.status.value}  commit={deployment.commit_hash or '-'}  "
                    f"completed={completed}"
                )
                shown += 1
                if shown >= limit:
                    break
            if shown == 0:
                print("   (none)")
    finally:
        await database.close()


if __name__ == "__main__":
    user_arg = int(sys.argv[1]) if len(sys.argv) > 1 else None
    asyncio.run(view_deployments(user_arg))
