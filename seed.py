from datetime import datetime, timedelta

from app.auth import get_password_hash
from app.clock import utcnow
from app.database import SessionLocal, engine, Base
from app.models import EmailSchedule, Movie, User

# Create tables
Base.metadata.create_all(bind=engine)

db = SessionLocal()

# Clear existing data
db.query(EmailSchedule).delete()
db.query(Movie).delete()
db.query(User).filter(User.email == "demo@movietrack.app").delete()

demo = User(
    name="Demo User",
    email="demo@movietrack.app",
    hashed_password=get_password_hash("Demo#Pass123"),
)
db.add(demo)
db.commit()
db.refresh(demo)

now = utcnow()

# Sample movies (images hosted elsewhere, so they are complete from the start)
movies = [
    Movie(
        user_id=demo.id,
        title="The Long Night Shift",
        original_title="The Long Night Shift",
        cover_image="https://images.example.com/long-night-shift.jpg",
        popularity=71.5,
        vote_count=1840,
        score=82,
        tagline="Nobody leaves before sunrise.",
        synopsis="A hospital night crew faces the strangest shift of their careers.",
        genres=["Drama", "Thriller"],
        release_date=datetime(2023, 3, 17),
        duration=118,
        status="Released",
        language="en",
        budget=12_000_000,
        revenue=54_000_000,
        profit=42_000_000,
        trailer_url="https://videos.example.com/long-night-shift",
    ),
    Movie(
        user_id=demo.id,
        title="Paper Satellites",
        original_title="Satélites de Papel",
        cover_image="https://images.example.com/paper-satellites.jpg",
        popularity=45.2,
        vote_count=312,
        score=74,
        tagline="Some dreams orbit forever.",
        synopsis="Two siblings build a rocket out of scrap to find their missing father.",
        genres=["Adventure", "Family"],
        release_date=now + timedelta(days=30),
        duration=96,
        status="Post Production",
        language="pt",
        budget=3_500_000,
        revenue=0,
        profit=-3_500_000,
        trailer_url="https://videos.example.com/paper-satellites",
    ),
]
db.add_all(movies)
db.commit()

# Upcoming releases get a reminder
for movie in movies:
    if movie.release_date > now:
        db.add(EmailSchedule(movie_id=movie.id, user_id=demo.id, scheduled_for=movie.release_date))
db.commit()

print("Database seeded successfully!")
print(f"  - demo user: {demo.email}")
print(f"  - {len(movies)} movies")

db.close()
