"""
内置岗位画像数据
"""
from typing import Dict, Any, List, Optional

ROLE_PROFILES: List[Dict[str, Any]] = [
    {
        "id": "software_engineer",
        "name": "Software Engineer",
        "category": "engineering",
        "experience_level": "mid",
        "required_skills": [
            "JavaScript", "Python", "Java", "C++", "Git", "SQL", "HTML/CSS",
            "Data Structures", "Algorithms", "Object-Oriented Programming",
        ],
        "preferred_skills": [
            "React", "Node.js", "TypeScript", "AWS", "Docker", "Kubernetes",
            "MongoDB", "PostgreSQL", "REST APIs", "GraphQL", "CI/CD", "Linux",
            "System Design", "Microservices",
        ],
        "matching_criteria": {
            "title": [
                "software engineer", "software developer", "full stack developer",
                "backend developer", "frontend developer", "web developer",
                "application developer", "systems engineer", "programmer",
            ],
            "skill": [
                "javascript", "python", "java", "react", "node.js", "sql",
                "git", "html", "css", "api", "database", "testing", "agile",
            ],
            "industry": [
                "tech", "technology", "software", "startup", "fintech",
                "saas", "e-commerce", "digital", "platform",
            ],
            "experience": [
                "developed", "built", "implemented", "designed", "created",
                "maintained", "optimized", "debugged", "tested", "deployed",
                "collaborated", "integrated", "automated", "refactored",
            ],
            "education": [
                "computer science", "software engineering", "computer engineering",
                "information technology", "mathematics", "engineering",
            ],
        },
        "action_verbs": ["Architected", "Led", "Optimized", "Scaled", "Mentored", "Delivered", "Integrated"],
        "summary_template": (
            "Experienced Software Engineer with [X] years of expertise in [PRIMARY TECHNOLOGIES]. "
            "Proven track record of developing scalable applications that serve [USER COUNT] users. "
            "Skilled in full-stack development with strong foundation in [TECHNICAL EXPERTISE]."
        ),
    },
    {
        "id": "engineering_manager",
        "name": "Engineering Manager",
        "category": "management",
        "experience_level": "senior",
        "required_skills": [
            "Team Leadership", "People Management", "Project Management", "Technical Strategy",
            "Agile/Scrum", "Performance Management", "Hiring", "Communication", "Mentoring",
        ],
        "preferred_skills": [
            "Software Development", "System Architecture", "Product Management",
            "Stakeholder Management", "OKRs", "Budget Management", "Process Improvement",
            "Cross-functional Collaboration", "Technical Roadmapping", "Risk Management",
        ],
        "matching_criteria": {
            "title": [
                "engineering manager", "team lead", "technical manager", "development manager",
                "software engineering manager", "technical lead", "team leader",
                "engineering director", "head of engineering",
            ],
            "skill": [
                "team leadership", "people management", "project management", "agile",
                "scrum", "mentoring", "hiring", "performance management", "strategy",
            ],
            "industry": [
                "tech", "technology", "software", "startup", "fintech",
                "saas", "enterprise", "digital", "platform",
            ],
            "experience": [
                "led", "managed", "mentored", "hired", "built", "scaled",
                "delivered", "collaborated", "coordinated", "facilitated",
                "established", "improved", "developed", "guided",
            ],
            "education": [
                "computer science", "engineering", "mba", "management",
                "business administration", "technology management",
            ],
        },
        "action_verbs": ["Led", "Scaled", "Mentored", "Hired", "Delivered", "Established"],
        "summary_template": (
            "Results-driven Engineering Manager with [X] years of experience leading high-performing teams "
            "of [TEAM_SIZE] engineers. Successfully delivered [NUMBER] major products serving [USER_BASE] users. "
            "Expertise in scaling engineering organizations and driving technical strategy."
        ),
    },
    {
        "id": "hr_specialist",
        "name": "HR Specialist",
        "category": "hr",
        "experience_level": "mid",
        "required_skills": [
            "Talent Acquisition", "Employee Relations", "Performance Management", "HRIS",
            "Employment Law", "Benefits Administration", "Interview Skills", "Communication",
        ],
        "preferred_skills": [
            "Organizational Development", "Change Management", "Training & Development",
            "Compensation Analysis", "Diversity & Inclusion", "Employee Engagement",
            "HR Analytics", "Conflict Resolution", "Policy Development",
        ],
        "matching_criteria": {
            "title": [
                "hr specialist", "human resources specialist", "hr generalist", "recruiter",
                "talent acquisition specialist", "hr coordinator", "people operations",
                "hr business partner", "employee relations specialist",
            ],
            "skill": [
                "recruitment", "talent acquisition", "employee relations", "hris",
                "performance management", "benefits", "compliance", "onboarding",
                "interviewing", "hr policies", "employment law",
            ],
            "industry": [
                "hr", "human resources", "people", "talent", "corporate",
                "enterprise", "consulting", "services", "organization",
            ],
            "experience": [
                "recruited", "hired", "onboarded", "managed", "developed",
                "implemented", "coordinated", "facilitated", "administered",
                "counseled", "trained", "supported", "maintained",
            ],
            "education": [
                "human resources", "psychology", "business administration",
                "organizational psychology", "industrial relations", "management",
            ],
        },
        "action_verbs": ["Recruited", "Onboarded", "Facilitated", "Implemented", "Coordinated"],
        "summary_template": (
            "Dedicated HR Specialist with [X] years of experience in talent acquisition, employee relations, "
            "and organizational development. Successfully recruited [NUMBER] professionals while maintaining "
            "[RETENTION_RATE] employee retention."
        ),
    },
    {
        "id": "ai_product_expert",
        "name": "AI Product Expert",
        "category": "business",
        "experience_level": "senior",
        "required_skills": [
            "AI/ML Fundamentals", "Product Management", "Data Analysis", "Python",
            "Technical Communication", "Stakeholder Management", "Product Strategy", "Agile",
        ],
        "preferred_skills": [
            "Deep Learning", "NLP", "Computer Vision", "MLOps", "Cloud Platforms",
            "AI Ethics", "Model Evaluation", "A/B Testing", "User Research", "Go-to-Market",
        ],
        "matching_criteria": {
            "title": [
                "ai product manager", "ml product manager", "ai product expert",
                "machine learning product manager", "technical product manager",
                "ai strategy", "ai consultant", "ml engineer", "data scientist",
            ],
            "skill": [
                "artificial intelligence", "machine learning", "deep learning",
                "product management", "python", "tensorflow", "pytorch",
                "nlp", "computer vision", "data analysis", "ml models",
            ],
            "industry": [
                "ai", "machine learning", "artificial intelligence", "tech",
                "startup", "saas", "data", "analytics", "automation",
            ],
            "experience": [
                "developed", "implemented", "deployed", "trained", "optimized",
                "launched", "managed", "analyzed", "designed", "built",
                "collaborated", "researched", "evaluated", "scaled",
            ],
            "education": [
                "computer science", "data science", "machine learning",
                "artificial intelligence", "mathematics", "statistics", "engineering",
            ],
        },
        "action_verbs": ["Launched", "Deployed", "Defined", "Scaled", "Evaluated"],
        "summary_template": (
            "Strategic AI Product Expert with [X] years of experience launching AI-powered products that serve "
            "[USER_COUNT] users. Proven track record of translating AI/ML capabilities into business value "
            "with expertise in [AI_DOMAINS]."
        ),
    },
    {
        "id": "data_scientist",
        "name": "Data Scientist",
        "category": "data",
        "experience_level": "mid",
        "required_skills": [
            "Python", "SQL", "Statistics", "Machine Learning", "Data Visualization",
            "Pandas", "NumPy", "Scikit-learn", "Data Analysis", "Hypothesis Testing",
        ],
        "preferred_skills": [
            "TensorFlow", "PyTorch", "R", "Spark", "Hadoop", "Tableau", "Power BI",
            "AWS", "GCP", "Deep Learning", "NLP", "Time Series Analysis", "A/B Testing",
        ],
        "matching_criteria": {
            "title": [
                "data scientist", "machine learning engineer", "data analyst",
                "research scientist", "quantitative analyst", "ml engineer",
                "data science consultant", "analytics consultant",
            ],
            "skill": [
                "python", "sql", "machine learning", "statistics", "data analysis",
                "pandas", "numpy", "scikit-learn", "tensorflow", "pytorch",
                "data visualization", "statistical modeling", "predictive modeling",
            ],
            "industry": [
                "data", "analytics", "research", "tech", "fintech",
                "healthcare", "consulting", "startup", "enterprise",
            ],
            "experience": [
                "analyzed", "modeled", "predicted", "developed", "implemented",
                "optimized", "built", "trained", "evaluated", "visualized",
                "experimented", "researched", "discovered", "improved",
            ],
            "education": [
                "data science", "statistics", "mathematics", "computer science",
                "physics", "engineering", "economics", "analytics",
            ],
        },
        "action_verbs": ["Analyzed", "Modeled", "Predicted", "Visualized", "Experimented"],
        "summary_template": (
            "Experienced Data Scientist with [X] years of expertise in machine learning and statistical analysis. "
            "Successfully developed [NUMBER] predictive models that improved business outcomes by [PERCENTAGE]."
        ),
    },
]

# 没有画像命中时使用的通用技能模式
FALLBACK_SKILL_PATTERNS: Dict[str, Dict[str, Any]] = {
    "software_developer": {
        "name": "Software Developer",
        "keywords": ["javascript", "python", "java", "react", "node", "sql", "git", "api", "programming", "coding"],
    },
    "data_analyst": {
        "name": "Data Analyst",
        "keywords": ["excel", "sql", "tableau", "python", "statistics", "analytics", "data", "reporting", "power bi"],
    },
    "project_manager": {
        "name": "Project Manager",
        "keywords": ["project management", "agile", "scrum", "pmp", "stakeholder", "budget", "planning", "jira"],
    },
    "marketing_specialist": {
        "name": "Marketing Specialist",
        "keywords": ["marketing", "seo", "social media", "content", "campaigns", "branding", "google ads", "analytics"],
    },
    "business_analyst": {
        "name": "Business Analyst",
        "keywords": ["requirements", "process", "analysis", "stakeholder", "documentation", "business", "workflow"],
    },
}


def get_role_profile(profile_id: str) -> Optional[Dict[str, Any]]:
    for profile in ROLE_PROFILES:
        if profile["id"] == profile_id:
            return profile
    return None
